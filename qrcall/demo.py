"""Demo QR codes, devices and owners for local development and seeding."""
from django.utils import timezone


def demo_documents(now):
    owners = [
        {"uid": "owner_alex", "name": "Alex Kim", "phone": "+12025550101", "platform": "ios"},
        {"uid": "owner_sam", "name": "Sam Lee", "phone": "+12025550102", "platform": "android"},
    ]

    users = {
        o["uid"]: {
            "uid": o["uid"],
            "name": o["name"],
            "phone": o["phone"],
            "platform": o["platform"],
            "fcmToken": None,
            "voipToken": None,
            "deviceTokens": [],
            "createdAt": now,
        }
        for o in owners
    }

    devices = {
        "device_alex_car": {
            "deviceId": "device_alex_car",
            "owner": {"userId": "owner_alex", "userName": "Alex Kim", "phone": "+12025550101"},
            "vehicle": {"plateNumber": "7ABC123", "make": "Toyota", "model": "Prius"},
            "status": "active",
            "settings": {
                "allowAnonymousCalls": True,
                "autoAnswer": False,
                "availableCallMethods": ["direct", "masked"],
                "emergencyContacts": [
                    {"name": "Jordan Kim", "phone": "+12025550199", "relationship": "spouse", "priority": 1},
                ],
            },
            "createdAt": now,
        },
        "device_sam_van": {
            "deviceId": "device_sam_van",
            "owner": {"userId": "owner_sam", "userName": "Sam Lee", "phone": "+12025550102"},
            "vehicle": {"plateNumber": "8XYZ789", "make": "Ford", "model": "Transit"},
            "status": "active",
            "settings": {
                "allowAnonymousCalls": False,
                "autoAnswer": False,
                "availableCallMethods": ["direct"],
                "emergencyContacts": [],
            },
            "createdAt": now,
        },
    }

    def _qr(qr_id, status, user_id=None, device_id=None, show_owner_name=True):
        linked = status == "linked"
        return {
            "qrId": qr_id,
            "status": status,
            "isActive": True,
            "linkedTo": {
                "userId": user_id if linked else None,
                "deviceId": device_id if linked else None,
                "linkedAt": now if linked else None,
            },
            "emergencyInfo": {
                "showOwnerName": show_owner_name,
                "showVehiclePlate": True,
                "emergencyContact": "",
                "alternateContact": "",
                "specialInstructions": "",
            },
            "stats": {"scanCount": 0, "callCount": 0, "emergencyCallCount": 0},
            "createdAt": now,
        }

    qr_codes = {
        "QR-DEMO-0001": _qr("QR-DEMO-0001", "linked", "owner_alex", "device_alex_car"),
        "QR-DEMO-0002": _qr("QR-DEMO-0002", "linked", "owner_sam", "device_sam_van", show_owner_name=False),
        "QR-DEMO-0003": _qr("QR-DEMO-0003", "available"),
    }
    return users, devices, qr_codes


def seed_store(store, now=None) -> None:
    """Load the demo documents into a MemoryStore."""
    users, devices, qr_codes = demo_documents(now or timezone.now())
    for uid, user in users.items():
        store.put_user(uid, user)
    for device in devices.values():
        store.put_device(device)
    for qr_code in qr_codes.values():
        store.put_qr_code(qr_code)
