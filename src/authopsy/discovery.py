"""
Endpoint Discovery for Authopsy.

Builds the endpoint list from:
- Inline `METHOD /path` lists
- Endpoint files (one `METHOD /path` per line)
- OpenAPI v3 / Swagger v2 documents (JSON or YAML)
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .models import Endpoint, HttpMethod, ParamType, PathParam

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ", ".join(m.value for m in HttpMethod)


class EndpointParseError(ValueError):
    """Invalid `METHOD /path` input."""
    pass


class DiscoveryError(Exception):
    """Error reading or interpreting an endpoint source."""
    pass


class EndpointParser:
    """Parses manually typed endpoints."""

    @classmethod
    def parse(cls, text: str) -> List[Endpoint]:
        """
        Parse a comma-separated endpoint list.

        Example:
            "GET /api/users, DELETE /api/users/{id}"
        """
        endpoints = [cls.parse_single(part.strip()) for part in text.split(",") if part.strip()]
        if not endpoints:
            raise EndpointParseError("No valid endpoints found in input")
        return endpoints

    @staticmethod
    def parse_single(text: str) -> Endpoint:
        parts = text.split()
        if len(parts) != 2:
            raise EndpointParseError(
                f"Invalid endpoint format: '{text}'. Expected 'METHOD /path'"
            )

        method_str, path = parts
        method = HttpMethod.parse(method_str)
        if method is None:
            raise EndpointParseError(
                f"Invalid HTTP method: '{method_str}'. Supported: {SUPPORTED_METHODS}"
            )
        if not path.startswith("/"):
            raise EndpointParseError(f"Path must start with '/': '{path}'")

        return Endpoint(path=path, method=method)

    @classmethod
    def load_file(cls, filepath: str) -> List[Endpoint]:
        """
        Load endpoints from a text file.

        Format:
            GET /api/users/{id}
            POST /api/orders
            # comments and blank lines are skipped
        """
        try:
            lines = Path(filepath).read_text().splitlines()
        except OSError as e:
            raise DiscoveryError(f"Cannot read endpoints file {filepath}: {e}") from e

        endpoints = []
        for lineno, line in enumerate(lines, 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                endpoints.append(cls.parse_single(line))
            except EndpointParseError as e:
                raise EndpointParseError(f"{filepath}:{lineno}: {e}") from e

        if not endpoints:
            raise EndpointParseError(f"No valid endpoints found in {filepath}")

        logger.info(f"Loaded {len(endpoints)} endpoints from {filepath}")
        return endpoints


class OpenApiParser:
    """
    Extracts endpoints from OpenAPI v3 and Swagger v2 documents.

    Path parameters declared in the document refine the ones inferred
    from the path template.
    """

    def parse_file(self, spec_path: str) -> List[Endpoint]:
        try:
            content = Path(spec_path).read_text()
        except OSError as e:
            raise DiscoveryError(f"Failed to read OpenAPI spec {spec_path}: {e}") from e

        endpoints = self.parse_content(content, source=spec_path)
        logger.info(f"Parsed {len(endpoints)} endpoints from {spec_path}")
        return endpoints

    def parse_content(self, content: str, source: str = "<string>") -> List[Endpoint]:
        spec = self._load(content, source)

        if "openapi" in spec:
            return self._parse_paths(spec, source, version=3)
        if "swagger" in spec:
            return self._parse_paths(spec, source, version=2)
        raise DiscoveryError(f"Unknown OpenAPI/Swagger version in {source}")

    @staticmethod
    def _load(content: str, source: str) -> Dict[str, Any]:
        try:
            if content.lstrip().startswith("{"):
                spec = json.loads(content)
            else:
                spec = yaml.safe_load(content)
        except (ValueError, yaml.YAMLError) as e:
            raise DiscoveryError(f"Failed to parse OpenAPI spec {source}: {e}") from e

        if not isinstance(spec, dict):
            raise DiscoveryError(f"OpenAPI spec {source} is not an object")
        return spec

    def _parse_paths(self, spec: Dict[str, Any], source: str, version: int) -> List[Endpoint]:
        paths = spec.get("paths")
        if not isinstance(paths, dict):
            label = "OpenAPI" if version == 3 else "Swagger"
            raise DiscoveryError(f"No 'paths' found in {label} spec {source}")

        endpoints = []
        for path, methods in paths.items():
            if not isinstance(methods, dict):
                continue

            for method_str, operation in methods.items():
                method = HttpMethod.parse(method_str)
                if method is None or not isinstance(operation, dict):
                    # e.g. path-level "parameters" or "summary"
                    continue

                params = operation.get("parameters")
                params = params if isinstance(params, list) else []
                inferred = Endpoint(path=path, method=method).path_params

                fields: Dict[str, Any] = {
                    "path": path,
                    "method": method,
                    "path_params": self._refine_params(inferred, params, path, version),
                }
                if version == 3:
                    request_body = operation.get("requestBody")
                    if isinstance(request_body, dict):
                        fields["request_body_example"] = self._body_example_v3(request_body)
                        fields["request_body_schema"] = self._body_schema_v3(request_body)
                else:
                    fields["request_body_example"] = self._body_example_v2(params)

                endpoints.append(Endpoint(**fields))

        return endpoints

    def _refine_params(
        self,
        inferred: List[PathParam],
        params: List[Any],
        path: str,
        version: int,
    ) -> List[PathParam]:
        declared: Dict[str, PathParam] = {}
        for param in params:
            if not isinstance(param, dict) or param.get("in") != "path":
                continue
            name = param.get("name")
            if not isinstance(name, str) or f"{{{name}}}" not in path:
                continue

            typed = param.get("schema") if version == 3 else param
            declared[name] = PathParam(
                name=name,
                param_type=self._param_type(typed if isinstance(typed, dict) else None),
                required=bool(param.get("required", True)),
            )

        refined = [declared.pop(p.name, p) for p in inferred]
        # Declared placeholders that are not whole path segments
        return refined + list(declared.values())

    @staticmethod
    def _param_type(schema: Optional[Dict[str, Any]]) -> ParamType:
        if not schema:
            return ParamType.STRING

        type_str = schema.get("type", "")
        format_str = schema.get("format", "")

        if type_str in ("integer", "number"):
            return ParamType.INTEGER
        if type_str == "string" and format_str == "uuid":
            return ParamType.UUID
        if type_str == "boolean":
            return ParamType.BOOLEAN
        return ParamType.STRING

    @staticmethod
    def _json_content(request_body: Dict[str, Any]) -> Dict[str, Any]:
        content = request_body.get("content") or {}
        json_content = content.get("application/json") if isinstance(content, dict) else None
        return json_content if isinstance(json_content, dict) else {}

    def _body_example_v3(self, request_body: Dict[str, Any]) -> Optional[Any]:
        json_content = self._json_content(request_body)

        if "example" in json_content:
            return json_content["example"]

        examples = json_content.get("examples")
        if isinstance(examples, dict):
            for example in examples.values():
                if isinstance(example, dict) and "value" in example:
                    return example["value"]
                break

        return None

    def _body_schema_v3(self, request_body: Dict[str, Any]) -> Optional[Any]:
        return self._json_content(request_body).get("schema")

    @staticmethod
    def _body_example_v2(params: List[Any]) -> Optional[Any]:
        for param in params:
            if isinstance(param, dict) and param.get("in") == "body":
                schema = param.get("schema")
                if isinstance(schema, dict) and "example" in schema:
                    return schema["example"]
        return None


def filter_endpoints(endpoints: Iterable[Endpoint], skip_paths: Iterable[str]) -> List[Endpoint]:
    """Drop endpoints whose path contains any skip substring."""
    skip = [s for s in skip_paths if s]
    return [ep for ep in endpoints if not any(s in ep.path for s in skip)]


def deduplicate_endpoints(endpoints: Iterable[Endpoint]) -> List[Endpoint]:
    """Remove duplicate (method, path) pairs, keeping the first."""
    seen = set()
    unique = []

    for ep in endpoints:
        key = (ep.method, ep.path)
        if key not in seen:
            seen.add(key)
            unique.append(ep)

    return unique
