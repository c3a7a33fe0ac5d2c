"""
Azure Face API service module.

Handles calls to the Azure Face API "detect" endpoint for the optional
auxiliary emotion prior. Only the emotion attribute and face rectangle are
requested; landmark geometry always comes from the MediaPipe cascade.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
import requests

import config

logger = logging.getLogger(__name__)

# Azure Face API input limits
MIN_IMAGE_SIDE = 36
MAX_IMAGE_SIDE = 4096
MAX_UPLOAD_BYTES = 6 * 1024 * 1024


class AzureFaceAPIService:
    """
    Client for the Azure Face API detect endpoint.

    Usage:
        service = get_azure_face_api_service()
        if service is not None:
            faces = service.detect_faces(canvas)
            scores = service.extract_emotion_from_face(faces[0]) if faces else None
    """

    def __init__(self, api_key: Optional[str] = None, endpoint: Optional[str] = None,
                 timeout: Optional[float] = None):
        """Initialize the client from explicit values or config.AZURE_FACE_API_*."""
        self.api_key = (api_key if api_key is not None else config.AZURE_FACE_API_KEY).strip()
        self.endpoint = (endpoint if endpoint is not None else config.AZURE_FACE_API_ENDPOINT).strip().rstrip("/")
        self.region = config.AZURE_FACE_API_REGION
        self.timeout = float(timeout if timeout is not None else config.AZURE_FACE_API_TIMEOUT_SEC)

        if not self.endpoint:
            raise ValueError("Azure Face API endpoint is empty")
        if not self.endpoint.startswith(("http://", "https://")):
            raise ValueError(f"Invalid Azure Face API endpoint format: {self.endpoint}. Must start with http:// or https://")
        if not self.api_key:
            raise ValueError("Azure Face API key is empty or invalid")

        self.api_version = "v1.0"
        # Endpoint may already include the /face path segment (searched after the host)
        lowered = self.endpoint.lower()
        face_at = lowered.find("/face", lowered.index("://") + 3)
        base_endpoint = self.endpoint[:face_at].rstrip("/") if face_at >= 0 else self.endpoint
        self.detect_url = f"{base_endpoint}/face/{self.api_version}/detect"

        self.headers = {
            "Ocp-Apim-Subscription-Key": self.api_key,
            "Content-Type": "application/octet-stream",
        }

    def _encode(self, image: np.ndarray) -> bytes:
        """JPEG-encode a BGR image within Azure's size limits."""
        if image is None or image.size == 0:
            raise ValueError("Invalid image: image is None or empty")
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Invalid image format: expected BGR image with shape (H, W, 3), got {image.shape}")

        h, w = image.shape[:2]
        if h < MIN_IMAGE_SIDE or w < MIN_IMAGE_SIDE:
            raise ValueError(f"Image too small: {w}x{h}. Minimum size is {MIN_IMAGE_SIDE}x{MIN_IMAGE_SIDE} pixels")
        if h > MAX_IMAGE_SIDE or w > MAX_IMAGE_SIDE:
            scale = min(MAX_IMAGE_SIDE / w, MAX_IMAGE_SIDE / h)
            image = cv2.resize(image, (int(w * scale), int(h * scale)), interpolation=cv2.INTER_AREA)

        for quality in (90, 70):
            ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
            if not ok or buffer is None:
                raise ValueError("Failed to encode image to JPEG")
            data = buffer.tobytes()
            if len(data) <= MAX_UPLOAD_BYTES:
                return data
        raise ValueError(f"Image file size too large: {len(data)} bytes. Maximum is 6MB")

    def detect_faces(self, image: np.ndarray) -> List[Dict[str, Any]]:
        """
        Detect faces and their emotion attribute.

        Args:
            image: BGR image array (OpenCV format)

        Returns:
            List of face dicts with "faceRectangle" and "faceAttributes.emotion"

        Raises:
            ValueError: If the image is unusable
            requests.RequestException: If the API call fails or returns an error status
        """
        image_data = self._encode(image)
        params = {
            "returnFaceId": "false",
            "returnFaceLandmarks": "false",
            "returnFaceAttributes": "emotion",
        }

        try:
            response = requests.post(
                self.detect_url,
                headers=self.headers,
                params=params,
                data=image_data,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise requests.RequestException(
                f"Azure Face API request timed out after {self.timeout:g} seconds. Endpoint: {self.detect_url}"
            ) from e
        except requests.ConnectionError as e:
            raise requests.RequestException(
                f"Azure Face API connection error: {e}. Check network connectivity and endpoint: {self.endpoint}"
            ) from e

        if response.status_code != 200:
            error_msg = f"Azure Face API returned status {response.status_code}"
            try:
                error_body = response.json()
            except ValueError:
                error_body = None
            if isinstance(error_body, dict) and isinstance(error_body.get("error"), dict):
                error_info = error_body["error"]
                error_msg += f": {error_info.get('message', 'Unknown error')}"
                if "code" in error_info:
                    error_msg += f" (code: {error_info['code']})"
            else:
                error_msg += f": {response.text[:200]}"
            raise requests.RequestException(error_msg)

        faces = response.json()
        if not isinstance(faces, list):
            raise requests.RequestException(f"Unexpected response format: expected list, got {type(faces).__name__}")
        return faces

    def extract_emotion_from_face(self, face_data: Dict[str, Any]) -> Optional[Dict[str, float]]:
        """
        Extract emotion scores from one face of a detect response.

        Returns:
            Dictionary of emotion scores (anger, contempt, disgust, fear, happiness,
            neutral, sadness, surprise) or None if not available
        """
        if not isinstance(face_data, dict):
            return None
        attributes = face_data.get("faceAttributes")
        if not isinstance(attributes, dict):
            return None
        emotion = attributes.get("emotion")
        if not isinstance(emotion, dict):
            return None
        return emotion

    def get_face_rectangle(self, face_data: Dict[str, Any]) -> Optional[Tuple[int, int, int, int]]:
        """Return (left, top, width, height) or None if not available."""
        if not isinstance(face_data, dict):
            return None
        rect = face_data.get("faceRectangle")
        if not isinstance(rect, dict):
            return None
        values = [rect.get(key) for key in ("left", "top", "width", "height")]
        if not all(isinstance(v, (int, float)) for v in values):
            return None
        return tuple(int(v) for v in values)


# Global service instance
azure_face_api_service: Optional[AzureFaceAPIService] = None


def get_azure_face_api_service() -> Optional[AzureFaceAPIService]:
    """
    Get or create the global Azure Face API service instance.

    Returns:
        AzureFaceAPIService instance if configured, None otherwise
    """
    global azure_face_api_service

    if azure_face_api_service is None:
        if not config.is_azure_face_api_enabled():
            logger.warning("Azure Face API is not enabled in configuration")
            return None
        try:
            azure_face_api_service = AzureFaceAPIService()
        except ValueError as e:
            logger.error("Azure Face API configuration issue: %s", e)
            return None
        logger.info("Azure Face API service initialized. Endpoint: %s", azure_face_api_service.endpoint)

    return azure_face_api_service
