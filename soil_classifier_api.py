#!/usr/bin/env python3
import sys
import json
import os
from soil_classifier_module import classify_soil_sync, SurveyValidationError
from soil_oracle_module import OracleSettings, build_oracle
from soil_survey_config import DEFAULT_ORACLE_PROVIDER

# Helper: Read oracle settings from an environment mapping
def load_oracle_settings(environ):
    provider = (environ.get("SOIL_ORACLE_PROVIDER") or DEFAULT_ORACLE_PROVIDER).strip().lower()
    return OracleSettings(
        provider=provider,
        model=environ.get("SOIL_ORACLE_MODEL") or None,
        api_key=environ.get("GOOGLE_API_KEY") or None,
        base_url=environ.get("OLLAMA_BASE_URL") or None,
    )

# Missing credentials are not a request error: classify with the rules only
def build_oracle_or_none(settings):
    try:
        return build_oracle(settings)
    except ValueError as e:
        print(f"⚠️ Oracle unavailable ({e}), using heuristic only", file=sys.stderr)
        return None

def handle_request(payload, oracle=None):
    if not isinstance(payload, dict):
        payload = {}

    try:
        result = classify_soil_sync(payload, oracle=oracle)
    except SurveyValidationError as e:
        return {
            "success": False,
            "error": "Missing required soil information fields.",
            "missing_fields": e.missing_fields,
        }

    response = {"success": True}
    response.update(result.to_dict())
    return response

def main(stdin=None, stdout=None, environ=None):
    stdin = sys.stdin if stdin is None else stdin
    stdout = sys.stdout if stdout is None else stdout
    environ = os.environ if environ is None else environ

    try:
        try:
            input_data = json.loads(stdin.read() or "{}")
        except ValueError as e:
            result = {"success": False, "error": f"Invalid JSON input: {e}"}
        else:
            settings = load_oracle_settings(environ)
            result = handle_request(input_data, oracle=build_oracle_or_none(settings))
    except Exception as e:
        print(f"⚠️ Soil classification failed: {type(e).__name__}: {e}", file=sys.stderr)
        result = {
            "success": False,
            "error": str(e),
        }

    print(json.dumps(result, ensure_ascii=False), file=stdout)
    return 0 if result["success"] else 1

if __name__ == "__main__":
    sys.exit(main())
