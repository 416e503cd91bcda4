"""
Centralized Soil Survey Configuration
This file contains the soil categories, heuristic scoring rules, confidence gate
and oracle defaults used by the soil classifier.
Single source of truth for survey fields, trigger phrases and category validation.
"""

# ============================================================================
# SOIL CATEGORIES
# ============================================================================
SOIL_CATEGORIES = ("sandy", "clay", "loamy", "silt")

# Balanced soil, used whenever the evidence does not single out one category
NEUTRAL_CATEGORY = "loamy"

# ============================================================================
# SURVEY FIELDS
# ============================================================================
# Request key -> normalized key
REQUIRED_SURVEY_FIELDS = {
    "soilTexture": "texture",
    "drainage": "drainage",
    "organicMatter": "organic_matter",
    "slope": "slope",
}

OPTIONAL_SURVEY_FIELDS = {
    "issues": "issues",
}

# ============================================================================
# HEURISTIC SCORING RULES
# ============================================================================
# (field, trigger phrases, credits). A rule fires once when any of its
# phrases is a substring of the normalized field; credits accumulate across rules.
HEURISTIC_RULES = [
    # --- Texture ---
    ("texture", ("gritty", "coarse"), {"sandy": 3}),
    ("texture", ("smooth", "silky", "very fine"), {"silt": 3}),
    ("texture", ("sticky", "heavy", "hard to crumble"), {"clay": 3}),
    ("texture", ("crumbly", "holds together but breaks easily", "breaks easily"), {"loamy": 3}),

    # --- Drainage ---
    ("drainage", ("drains very quickly", "drains quickly", "dries fast"), {"sandy": 3, "loamy": 1}),
    ("drainage", ("drains moderately", "no standing water"), {"loamy": 3}),
    ("drainage", ("stands for a few hours", "stands a few hours"), {"clay": 2, "silt": 2}),
    ("drainage", ("often stands", "stands long", "long time", "puddles"), {"clay": 3, "silt": 2}),

    # --- Organic matter / fertility ---
    ("organic_matter", ("very low", "pale"), {"sandy": 1, "silt": 1}),
    ("organic_matter", ("moderate",), {"loamy": 2}),
    ("organic_matter", ("high", "dark topsoil"), {"loamy": 3, "clay": 1}),

    # --- Slope / terrain ---
    ("slope", ("flat", "almost flat"), {"clay": 1, "loamy": 1}),
    ("slope", ("gentle",), {"loamy": 1}),
    ("slope", ("medium-to-steep", "medium to steep", "steep"), {"sandy": 1, "silt": 1}),

    # --- Issues (optional) ---
    ("issues", ("erosion",), {"sandy": 2}),           # lighter soils wash away
    ("issues", ("compaction", "zbijen"), {"clay": 2}),  # typical of clay
    ("issues", ("poor yield", "low yield"), {"sandy": 1, "silt": 1}),
]

# ============================================================================
# ORACLE RESPONSE HANDLING
# ============================================================================
# Oracle category overrides the heuristic baseline only at or above this value
CONFIDENCE_THRESHOLD = 0.4

# JSON keys that may carry the category in a structured oracle answer
CATEGORY_KEYS = ("soiltype", "soil_type", "category", "type", "soil")
CONFIDENCE_KEYS = ("confidence", "score", "probability")

# Keyword scan order. "loam" goes first, the other stems never occur inside it.
KEYWORD_DESIGNATORS = (
    ("loam", "loamy"),
    ("sand", "sandy"),
    ("clay", "clay"),
    ("silt", "silt"),
)

SOURCE_HEURISTIC = "heuristic"
SOURCE_ORACLE = "oracle"
SOURCE_FALLBACK = "fallback"

# ============================================================================
# ORACLE DEFAULTS
# ============================================================================
ORACLE_PROVIDERS = ("gemini", "ollama")

DEFAULT_ORACLE_PROVIDER = "gemini"

DEFAULT_ORACLE_MODELS = {
    "gemini": "gemini-2.0-flash",
    "ollama": "llama3.2",
}

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"

# 🔒 LOCKED: Deterministic classification output
ORACLE_TEMPERATURE = 0.1

CLASSIFICATION_PROMPT_TEXT = """
You are an agronomy expert.

Your task is to classify the soil into ONE of these four standard soil types:

1) sandy  - coarse, gritty particles, very fast drainage, low water-holding capacity.
2) clay   - very fine particles, sticky when wet, heavy, slow drainage, often waterlogging.
3) loamy  - balanced mixture, crumbly structure, good drainage but still holds moisture, generally fertile.
4) silt   - very fine, smooth and silky, holds water longer than sand, moderate drainage.

Use ONLY the farmer's answers below:

- Texture when rubbed between fingers: {texture}
- Water behaviour after heavy rain: {drainage}
- Organic matter / fertility level: {organic_matter}
- Field slope / terrain: {slope}
- Reported issues (if any): {issues}

Step 1: Briefly reason about which type fits best and why.
Step 2: Select exactly ONE of: sandy, clay, loamy, silt.

Return your final answer as pure JSON in ONE LINE, like:
{{"soilType":"loamy","confidence":0.82}}

Where:
- soilType is exactly "sandy", "clay", "loamy" or "silt"
- confidence is a number between 0 and 1 (your subjective confidence).
""".strip()

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def is_valid_category(value) -> bool:
    """
    Check membership in the closed soil category set.

    Args:
        value: Candidate category (any type)

    Returns:
        True only for one of "sandy", "clay", "loamy", "silt"
    """
    return isinstance(value, str) and value in SOIL_CATEGORIES


def find_missing_fields(answers) -> list:
    """
    List required survey fields that are absent, blank or falsy.

    Args:
        answers: Raw survey answers mapping (request keys)

    Returns:
        Request keys of missing fields, in form order
    """
    answers = answers or {}
    missing = []
    for field_name in REQUIRED_SURVEY_FIELDS:
        value = answers.get(field_name)
        # falsy non-strings (0, False) count as missing too
        if not value or not str(value).strip():
            missing.append(field_name)
    return missing


def get_default_model(provider: str) -> str:
    """
    Get the default model name for an oracle provider.

    Args:
        provider: "gemini" or "ollama"

    Returns:
        Model identifier

    Raises:
        ValueError: If provider not recognized
    """
    if provider not in DEFAULT_ORACLE_MODELS:
        raise ValueError(f"Unknown oracle provider: {provider}. Must be one of {list(ORACLE_PROVIDERS)}")
    return DEFAULT_ORACLE_MODELS[provider]
