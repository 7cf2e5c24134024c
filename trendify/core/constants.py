"""
Constants for the Trendify image generation service.
====================================================

Central configuration for model identifiers, pacing, quota limits and the
wording used when talking to the image model. Other modules import from
here; ClientConfig applies environment overrides on top of these defaults.
"""

from typing import Dict, List

# --- Model Definitions ---
IMAGE_GENERATION_MODEL_ID = "gemini-2.5-flash-image-preview"
TEXT_TO_IMAGE_MODEL_ID = "imagen-4.0-generate-001"
PROMPT_VARIATION_MODEL_ID = "gemini-2.5-flash"

# --- Proxy Endpoints ---
DEFAULT_PROXY_URL = "http://localhost:8788/api/gemini"
GENERATE_CONTENT_ENDPOINT = "generateContent"
GENERATE_IMAGES_ENDPOINT = "generateImages"
VALIDATE_ENDPOINT = "validate"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0

RESPONSE_MODALITIES = ["IMAGE", "TEXT"]
DEFAULT_IMAGE_MIME_TYPE = "image/png"

# --- Pacing & Quota ---
# Self-imposed spacing between dispatches; keeps us under the vendor's per-minute limit.
INTER_CALL_DELAY_SECONDS = 1.1
RATE_WINDOW_SECONDS = 60
RATE_LIMIT_PER_WINDOW = 60
COOLDOWN_SECONDS = 60
TICK_INTERVAL_SECONDS = 1.0

# --- Variation Runs ---
VARIATION_POOL_SIZE = 1
MIN_VARIATIONS = 1
MAX_VARIATIONS = 60
DEFAULT_VARIATIONS = 5

# --- Enhancement ---
ENHANCEMENT_TIERS = ["HD", "2K", "4K"]
# Tiers that are produced by running the single enhancement pass more than once.
ENHANCEMENT_PASSES: Dict[str, int] = {"HD": 1, "2K": 1, "4K": 2}

ENHANCEMENT_PROMPT_TEMPLATE = (
    "Act as a professional photo restoration and upscaling tool. Upscale this image to "
    "{quality} resolution using super-resolution techniques. Sharpen details, remove noise "
    "and artifacts, and improve overall clarity without changing the original composition "
    "or subject. The final image must be noticeably clearer and more detailed."
)

PROMPT_VARIATION_SYSTEM_INSTRUCTION = (
    "You are a creative assistant specializing in generating diverse and interesting "
    "variations of image generation prompts. The user will provide a base prompt and a "
    "number. Your task is to rewrite the prompt that many times, introducing unique elements "
    "like different art styles, lighting, composition, or context. Ensure the core subject "
    "of the original prompt is maintained. The output must be a JSON array of strings, with "
    "each string being a distinct prompt variation. Do not include the original prompt in "
    "the output. The array must contain exactly the number of variations requested."
)

# --- Batch Styles ---
# Styles whose batch tasks consume image pairs instead of single images.
PAIRED_STYLE_IDS: List[str] = ["polaroid"]

# --- Credentials ---
CREDENTIAL_STORAGE_KEY = "userApiKey"
DEFAULT_CREDENTIALS_PATH = "~/.trendify/credentials.json"

# --- Error Classification ---
INVALID_CREDENTIAL_MARKERS = ["API key not valid", "PERMISSION_DENIED"]
QUOTA_MARKERS = ["RESOURCE_EXHAUSTED", "429"]
SAFETY_MARKER = "SAFETY"
MODEL_ERROR_PREFIX = "MODEL_ERROR:"
NO_CREDENTIAL_MARKER = "NO_API_KEY"
NETWORK_MARKERS = ["Failed to fetch", "NETWORK_ERROR"]

REFUSAL_KEYWORDS = [
    "cannot fulfill", "i'm sorry", "unable to", "cannot generate", "i cannot",
    "as an ai", "my purpose is to be", "my safety guidelines", "violates my safety policies",
]

EMPTY_MODEL_RESPONSE_TEXT = "No valid response was received from the model."
