"""Device description document (``GET :8001/ms/1.0/``)."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from samtv.errors import InvalidResponse

logger = logging.getLogger(__name__)

DESCRIPTION_PORT = 8001


@dataclass(frozen=True)
class Capability:
    """A service advertised by the device."""

    name: str
    port: str
    location: str


@dataclass
class DeviceDescription:
    """Description reported by the device. Unknown fields are ignored."""

    duid: str = ""
    model: str = ""
    model_name: str = ""
    model_description: str = ""
    network_type: str = ""
    ssid: str = ""
    ip: str = ""
    firmware_version: str = ""
    device_name: str = ""
    device_id: str = ""
    udn: str = ""
    resolution: str = ""
    country_code: str = ""
    smart_hub_agreement: str = ""
    service_uri: str = ""
    dial_uri: str = ""
    capabilities: list[Capability] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "DeviceDescription":
        """Create from the device's JSON document."""
        capabilities = [
            Capability(
                name=str(c.get("Name", "")),
                port=str(c.get("Port", "")),
                location=str(c.get("Location", "")),
            )
            for c in d.get("Capabilities") or []
            if isinstance(c, dict)
        ]
        return cls(
            duid=d.get("DUID", ""),
            model=d.get("Model", ""),
            model_name=d.get("ModelName", ""),
            model_description=d.get("ModelDescription", ""),
            network_type=d.get("NetworkType", ""),
            ssid=d.get("SSID", ""),
            ip=d.get("IP", ""),
            firmware_version=d.get("FirmwareVersion", ""),
            device_name=d.get("DeviceName", ""),
            device_id=d.get("DeviceID", ""),
            udn=d.get("UDN", ""),
            resolution=d.get("Resolution", ""),
            country_code=d.get("CountryCode", ""),
            smart_hub_agreement=d.get("SmartHubAgreement", ""),
            service_uri=d.get("ServiceURI", ""),
            dial_uri=d.get("DialURI", ""),
            capabilities=capabilities,
        )

    @classmethod
    def from_json(cls, text: str) -> "DeviceDescription":
        """Parse the description document.

        Raises:
            InvalidResponse: If the document is not a JSON object.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.info(text)
            raise InvalidResponse(f"Cannot parse JSON description: {e}") from e
        if not isinstance(data, dict):
            raise InvalidResponse("Device description is not an object")
        return cls.from_dict(data)
