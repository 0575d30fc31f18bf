import logging
from dataclasses import dataclass

from .constants import DEVICE_ACTIVE, PUBLIC_OWNER_NAME, QR_AVAILABLE, QR_LINKED
from .errors import AnonymousCallsDisabled, DeviceNotFound, QRNotFound, QRNotLinked

logger = logging.getLogger("qrcall")


@dataclass
class Resolution:
    qr_code: dict
    device: dict
    owner_id: str


def _not_linked_message(status: str) -> str:
    if status == QR_AVAILABLE:
        return "This QR code has not been activated yet. Please contact the vehicle owner."
    return f"QR code status: {status}"


class IdentityResolver:
    """Maps a QR identifier to its linked device and owning user."""

    def __init__(self, store):
        self.store = store

    def _active_qr(self, qr_id: str) -> dict:
        qr_code = self.store.get_qr_code(qr_id)
        if not qr_code or not qr_code.get("isActive", True):
            raise QRNotFound("QR code not found or inactive")
        return qr_code

    def resolve(self, qr_id: str) -> Resolution:
        qr_code = self._active_qr(qr_id)

        status = qr_code.get("status")
        linked_to = qr_code.get("linkedTo") or {}
        if status != QR_LINKED or not linked_to.get("userId") or not linked_to.get("deviceId"):
            raise QRNotLinked(
                "QR code is not linked to any device",
                status=status,
                message=_not_linked_message(status),
            )

        device = self.store.get_device(linked_to["deviceId"])
        if not device or device.get("status") != DEVICE_ACTIVE:
            raise DeviceNotFound("Device not found or inactive")

        if not (device.get("settings") or {}).get("allowAnonymousCalls", True):
            raise AnonymousCallsDisabled("Anonymous calls are not allowed for this device")

        return Resolution(qr_code=qr_code, device=device, owner_id=linked_to["userId"])

    def lookup(self, qr_id: str) -> dict:
        """Scan path: count the scan and return public-safe QR info."""
        qr_code = self._active_qr(qr_id)
        self.store.increment_qr_stats(qr_id, scan=True)
        logger.info(f"[QR/INFO] Scan recorded for {qr_id}")

        status = qr_code.get("status")
        if status != QR_LINKED:
            return {
                "qrId": qr_id,
                "status": status,
                "isLinked": False,
                "message": _not_linked_message(status),
            }

        linked_to = qr_code.get("linkedTo") or {}
        device = self.store.get_device(linked_to.get("deviceId") or "")
        if not device or device.get("status") != DEVICE_ACTIVE:
            raise DeviceNotFound("Device not found or inactive")

        emergency_info = qr_code.get("emergencyInfo") or {}
        owner = device.get("owner") or {}
        vehicle = device.get("vehicle") or {}
        return {
            "qrId": qr_id,
            "status": status,
            "isLinked": True,
            "linkedAt": linked_to.get("linkedAt"),
            "owner": {
                "name": owner.get("userName") if emergency_info.get("showOwnerName", True) else PUBLIC_OWNER_NAME,
            },
            "vehicle": {
                "plateNumber": vehicle.get("plateNumber") if emergency_info.get("showVehiclePlate", True) else "Hidden",
            },
            "emergencyInfo": {
                "emergencyContact": emergency_info.get("emergencyContact", ""),
                "alternateContact": emergency_info.get("alternateContact", ""),
                "specialInstructions": emergency_info.get("specialInstructions", ""),
            },
            "allowAnonymousCalls": (device.get("settings") or {}).get("allowAnonymousCalls", True),
        }
