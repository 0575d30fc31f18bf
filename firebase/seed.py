"""
Firestore seed script: demo QR codes, devices and owners.
Run with: python3 firebase/seed.py [--confirm-prod] [--reset]

Against the emulator (FIREBASE_USE_EMULATOR=true) no flag is needed; a real
project requires --confirm-prod.
"""

import json
import os
import sys
from datetime import datetime, timezone

import firebase_admin
from firebase_admin import credentials, firestore

from qrcall.demo import demo_documents


def _require_env(name):
    value = os.environ.get(name)
    if not value:
        print(f"Missing env: {name}", file=sys.stderr)
        sys.exit(1)
    return value


def _init_firebase():
    if os.environ.get("FIREBASE_USE_EMULATOR", "").lower() == "true":
        os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
        firebase_admin.initialize_app(
            credential=None,
            options={"projectId": os.environ.get("FIREBASE_PROJECT_ID", "demo-project")},
        )
        return

    if "--confirm-prod" not in sys.argv:
        print("Refusing to seed a real project without --confirm-prod flag.", file=sys.stderr)
        sys.exit(1)

    project_id = _require_env("FIREBASE_PROJECT_ID")
    service_account_json = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
    service_account_path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")

    if service_account_json:
        try:
            cred = credentials.Certificate(json.loads(service_account_json))
        except json.JSONDecodeError as exc:
            print(f"Invalid FIREBASE_SERVICE_ACCOUNT JSON: {exc}", file=sys.stderr)
            sys.exit(1)
    elif service_account_path and os.path.exists(service_account_path):
        cred = credentials.Certificate(service_account_path)
    else:
        print(
            "Provide FIREBASE_SERVICE_ACCOUNT or FIREBASE_SERVICE_ACCOUNT_PATH for production.",
            file=sys.stderr,
        )
        sys.exit(1)

    firebase_admin.initialize_app(cred, options={"projectId": project_id})


def _clear_collection(collection_ref):
    for doc in collection_ref.stream():
        doc.reference.delete()


def clear_all(db):
    print("Clearing Firestore call data...")
    for name in ("qrCodes", "devices", "calls"):
        _clear_collection(db.collection(name))
    print("Clear completed")


def seed(db):
    print("Seeding Firestore with demo QR codes...")
    users, devices, qr_codes = demo_documents(datetime.now(timezone.utc))

    for uid, user in users.items():
        db.collection("users").document(uid).set(user, merge=True)
    for device_id, device in devices.items():
        db.collection("devices").document(device_id).set(device)
    for qr_id, qr_code in qr_codes.items():
        db.collection("qrCodes").document(qr_id).set(qr_code)

    print(f"Seed completed: {len(qr_codes)} QR codes, {len(devices)} devices, {len(users)} users")


def main():
    _init_firebase()
    db = firestore.client()

    if "--reset" in sys.argv:
        clear_all(db)

    seed(db)


if __name__ == "__main__":
    main()
