import os
import sys
import time
from pathlib import Path

import requests

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from app.auth import sign_token
from app.config import settings

BASE_URL = os.getenv("SMOKE_BASE_URL", "http://localhost:8000")

def run_detection(image_path, criteria="materials", username="smoke"):
    headers = {"Authorization": f"Bearer {sign_token({'username': username}, settings.JWT_SECRET, 3600)}"}

    # Check health endpoint first
    health_response = requests.get(f"{BASE_URL}/health")
    print("Health check response:", health_response.json())

    with open(image_path, "rb") as f:
        upload_response = requests.post(
            f"{BASE_URL}/images/v1/images",
            files=[("image", (Path(image_path).name, f, "image/jpeg"))],
            headers=headers,
        )
    upload_response.raise_for_status()
    name = upload_response.json()[0]["name"]
    print("Uploaded:", name)

    print("Submitting detection...")
    detection_response = requests.post(
        f"{BASE_URL}/ai/v1/detection",
        json={"imageName": name, "criteria": criteria},
        headers=headers,
    )
    print("Detection response:", detection_response.status_code, detection_response.json())
    if detection_response.status_code >= 400:
        return

    # The pipeline finishes through provider webhooks; poll the metadata until it settles
    metadata_url = f"{BASE_URL}/images/v1/image/{name}/metadata"
    while True:
        metadata = requests.get(metadata_url).json()["metadata"]
        value = metadata.get(criteria)
        print(f"{criteria}:", value)
        if value and value != "Processing":
            break
        time.sleep(5)

    print("Final metadata:", metadata)

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/smoke_local.py <image.jpg> [criteria]")
        sys.exit(1)
    run_detection(sys.argv[1], *sys.argv[2:3])
