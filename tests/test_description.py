"""Tests for description module."""

import json

import pytest

from samtv.description import Capability, DeviceDescription
from samtv.errors import InvalidResponse

SAMPLE = {
    "DUID": "uuid:0ee6ff2e-1c6d-4a0e-b2c4-5a1d1d3a0c11",
    "Model": "14_X14_BT",
    "ModelName": "UE48H6200",
    "ModelDescription": "Samsung DTV RCR",
    "NetworkType": "wireless",
    "SSID": "home",
    "IP": "192.168.1.20",
    "FirmwareVersion": "Unknown",
    "DeviceName": "[TV] Living room",
    "DeviceID": "uuid:0ee6ff2e",
    "UDN": "uuid:0ee6ff2e",
    "Resolution": "1920x1080",
    "CountryCode": "FR",
    "SmartHubAgreement": "true",
    "ServiceURI": "http://192.168.1.20:8001/ms/1.0/",
    "DialURI": "http://192.168.1.20:8001/ws/apps/",
    "Capabilities": [
        {"Name": "samsung:multiscreen:1", "Port": "8001", "Location": "/ms/1.0/"}
    ],
}


class TestDeviceDescription:
    """Test description parsing."""

    def test_from_json(self):
        """All known fields are mapped."""
        desc = DeviceDescription.from_json(json.dumps(SAMPLE))

        assert desc.duid == SAMPLE["DUID"]
        assert desc.model_name == "UE48H6200"
        assert desc.network_type == "wireless"
        assert desc.device_name == "[TV] Living room"
        assert desc.resolution == "1920x1080"
        assert desc.capabilities == [
            Capability(name="samsung:multiscreen:1", port="8001", location="/ms/1.0/")
        ]

    def test_unknown_and_missing_fields(self):
        """Unknown fields are ignored, missing ones are empty."""
        desc = DeviceDescription.from_dict({"ModelName": "X", "Extra": 1})

        assert desc.model_name == "X"
        assert desc.ssid == ""
        assert desc.capabilities == []

    def test_invalid_json(self):
        """Non-JSON documents are rejected."""
        with pytest.raises(InvalidResponse):
            DeviceDescription.from_json("<html>")

    def test_not_an_object(self):
        """JSON that is not an object is rejected."""
        with pytest.raises(InvalidResponse):
            DeviceDescription.from_json("[1, 2]")
