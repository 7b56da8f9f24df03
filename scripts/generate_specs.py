#!/usr/bin/env python3
"""
Generate JSON Schemas, YAML variants, and OpenAPI from Pydantic models.

Outputs under briefloop/specs/:
 - schemas/*.json (and *.yaml)
 - openapi.yaml and openapi.json
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, Optional

try:
    import yaml  # type: ignore
except Exception as exc:  # pragma: no cover
    print("PyYAML is required: pip install pyyaml", file=sys.stderr)
    raise


ROOT = Path(__file__).resolve().parents[1]
PACKAGE = ROOT / "briefloop"
SPECS = PACKAGE / "specs"
SCHEMAS_DIR = SPECS / "schemas"

sys.path.insert(0, str(ROOT))

from briefloop.specs.models import SCHEMA_MODELS  # noqa: E402

# route -> (request model, success response model, summary)
CALLBACK_ROUTES = {
    "/callbacks/pre-notify": ("PreNotifyRequest", "ActionResponse", "Send the pre-call notification"),
    "/callbacks/start-briefing": ("StartBriefingRequest", "ActionResponse", "Place the briefing call now"),
    "/callbacks/content-ready": ("ContentReadyRequest", "ActionResponse", "Open an approval workflow"),
    "/callbacks/posting-complete": ("PostingCompleteRequest", "ActionResponse", "Tell the contributor where content went live"),
    "/callbacks/completion": ("CompletionCallback", "ActionResponse", "Generic completion callback"),
}


def write_json_yaml(obj: dict, json_path: Path) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    yaml_path = json_path.with_suffix(".yaml")
    with yaml_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f, sort_keys=False, allow_unicode=True)


def build_schemas() -> Dict[str, dict]:
    return {filename: model.model_json_schema() for filename, model in SCHEMA_MODELS.items()}


def generate_model_schemas(out_dir: Optional[Path] = None) -> None:
    out_dir = out_dir or SCHEMAS_DIR
    for filename, schema in build_schemas().items():
        write_json_yaml(schema, out_dir / filename)


def _error_responses() -> dict:
    ref = {"application/json": {"schema": {"$ref": "#/components/schemas/ErrorResponse"}}}
    return {
        "400": {"description": "Malformed payload", "content": ref},
        "401": {"description": "Callback secret mismatch", "content": ref},
        "404": {"description": "No matching session or workflow", "content": ref},
        "409": {"description": "Transition refused; prior status preserved", "content": ref},
        "503": {"description": "Downstream service or store unavailable", "content": ref},
    }


def build_openapi() -> dict:
    models = {model.__name__: model for model in SCHEMA_MODELS.values()}
    components = {"schemas": {name: model.model_json_schema() for name, model in models.items()}}
    components["securitySchemes"] = {
        "callbackSecret": {"type": "apiKey", "in": "header", "name": "X-Callback-Secret"}
    }

    paths: Dict[str, dict] = {}
    for route, (request_name, response_name, summary) in CALLBACK_ROUTES.items():
        paths[route] = {
            "post": {
                "summary": summary,
                "security": [{"callbackSecret": []}],
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{request_name}"}}},
                },
                "responses": {
                    "200": {
                        "description": "Accepted",
                        "content": {
                            "application/json": {"schema": {"$ref": f"#/components/schemas/{response_name}"}}
                        },
                    },
                    **_error_responses(),
                },
            }
        }
    paths["/sessions/{id}"] = {
        "get": {
            "summary": "Session or workflow with its ordered step ledger",
            "parameters": [{"in": "path", "name": "id", "required": True, "schema": {"type": "string"}}],
            "responses": {
                "200": {
                    "description": "Record and steps",
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/StatusResponse"}}},
                },
                "404": _error_responses()["404"],
            },
        }
    }

    return {
        "openapi": "3.0.3",
        "info": {
            "title": "Briefloop Functions API",
            "version": "0.1.0",
            "description": "Callback and monitoring endpoints of the briefing and approval orchestrator.",
        },
        "servers": [{"url": "http://localhost:7071/api", "description": "Local Functions host"}],
        "paths": paths,
        "components": components,
    }


def generate_openapi() -> None:
    write_json_yaml(build_openapi(), SPECS / "openapi.json")


def main() -> None:
    generate_model_schemas()
    generate_openapi()
    print("Specs generated under briefloop/specs/")


if __name__ == "__main__":
    main()
