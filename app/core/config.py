from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Directory Configuration
BASE_DIR = Path(__file__).parent.parent.parent

# Pipeline stages, in execution order
DETECTION_STAGE = "detection"
DESCRIPTION_STAGE = "description"
STAGE_ORDER = [DETECTION_STAGE, DESCRIPTION_STAGE]

# Query parameter carrying the job key on webhook callbacks
JOB_KEY_PARAM = "job_key"

# Webhook events we ask the async provider to deliver
WEBHOOK_EVENTS = ["completed"]

# Status strings written into subject metadata
PROCESSING_STATUS = "Processing"
ERROR_STATUS_TEMPLATE = "Error in {stage}"

# Detection (grounded segmentation) crops the image to the building
DETECTION_MASK_PROMPT = "building, facade, house"
DETECTION_NEGATIVE_MASK_PROMPT = "sky, car, person, tree"

# Description prompts, one per criteria
CRITERIA_PROMPTS = {
    "materials": (
        "List the construction materials visible on this building facade "
        "(e.g. stone, brick, concrete, wood, glass, metal). "
        "Answer with a short comma separated list."
    ),
    "history": (
        "Estimate the construction period and architectural style of this building. "
        "Mention the visual clues that support the estimate in two or three sentences."
    ),
    "seismic": (
        "Assess the seismic vulnerability of this building from its structure, "
        "materials, height and irregularities. Answer with a risk level "
        "(low, medium, high) followed by a one sentence justification."
    ),
}

# Which stage a completed stage hands its result to (None: finalize)
NEXT_STAGE = {
    DETECTION_STAGE: DESCRIPTION_STAGE,
    DESCRIPTION_STAGE: None,
}
