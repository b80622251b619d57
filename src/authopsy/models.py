"""
Data models for Authopsy.

Pydantic models for roles, endpoints, responses, findings,
scan results and configuration.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .differ import extract_key_paths, json_depth

# Bodies nested deeper than this are treated as unparsed
MAX_JSON_DEPTH = 128


class Role(str, Enum):
    """Authorization levels requested independently."""
    ADMIN = "Admin"
    USER = "User"
    ANONYMOUS = "Anonymous"

    @property
    def label(self) -> str:
        return "Anon" if self is Role.ANONYMOUS else self.value


class Severity(str, Enum):
    """Vulnerability severity levels."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class HttpMethod(str, Enum):
    """HTTP methods."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, value: str) -> Optional["HttpMethod"]:
        """Case-insensitive lookup, None for unknown methods."""
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def requires_body(self) -> bool:
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


class ParamType(str, Enum):
    """Semantic type of a path parameter."""
    STRING = "string"
    INTEGER = "integer"
    UUID = "uuid"
    BOOLEAN = "boolean"


class VulnType(str, Enum):
    """Kinds of access-control findings."""
    BROKEN_ACCESS_CONTROL = "broken_access_control"
    VERTICAL_PRIVILEGE_ESCALATION = "vertical_privilege_escalation"
    HORIZONTAL_PRIVILEGE_ESCALATION = "horizontal_privilege_escalation"
    DATA_LEAKAGE = "data_leakage"
    SENSITIVE_DATA_EXPOSURE = "sensitive_data_exposure"
    MISSING_AUTHENTICATION = "missing_authentication"
    INCONSISTENT_AUTH = "inconsistent_auth"
    ROLE_CONFUSION = "role_confusion"
    PAGINATION_BYPASS = "pagination_bypass"
    TIMING_ATTACK = "timing_attack"
    INFO_DISCLOSURE = "info_disclosure"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def recommendation(self) -> str:
        return REMEDIATIONS.get(self, "")


REMEDIATIONS: Dict[VulnType, str] = {
    VulnType.BROKEN_ACCESS_CONTROL: "Add role-based authorization check before returning data",
    VulnType.VERTICAL_PRIVILEGE_ESCALATION: "Verify user role matches required permission level",
    VulnType.HORIZONTAL_PRIVILEGE_ESCALATION: "Check resource ownership before granting access",
    VulnType.DATA_LEAKAGE: "Filter response fields based on user permissions",
    VulnType.SENSITIVE_DATA_EXPOSURE: "Remove or mask sensitive fields for non-admin users",
    VulnType.MISSING_AUTHENTICATION: "Require authentication token for this endpoint",
    VulnType.INCONSISTENT_AUTH: "Standardize authentication requirements across endpoints",
    VulnType.ROLE_CONFUSION: "Review and fix role hierarchy in authorization logic",
    VulnType.PAGINATION_BYPASS: "Enforce pagination limits server-side regardless of request",
    VulnType.TIMING_ATTACK: "Use constant-time comparison for sensitive operations",
    VulnType.INFO_DISCLOSURE: "Return generic error messages to prevent information leakage",
}


# --- Role Models ---

class RoleConfig(BaseModel):
    """Credential configuration for one role.

    Two configs are equal when they describe the same role; a scan holds
    at most one config per role.
    """
    role: Role
    token: Optional[str] = None
    header_name: str = "Authorization"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RoleConfig):
            return self.role == other.role
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.role)


# --- Endpoint Models ---

_UUID_DEFAULT = "00000000-0000-0000-0000-000000000001"

_DEFAULT_VALUES: Dict[ParamType, str] = {
    ParamType.STRING: "test",
    ParamType.INTEGER: "1",
    ParamType.UUID: _UUID_DEFAULT,
    ParamType.BOOLEAN: "true",
}


class PathParam(BaseModel):
    """A `{name}` placeholder in an endpoint path."""
    name: str
    param_type: ParamType = ParamType.STRING
    required: bool = True

    def default_value(self) -> str:
        return _DEFAULT_VALUES[self.param_type]


def infer_param_type(name: str) -> ParamType:
    """Guess a parameter's type from its name."""
    lower = name.lower()
    if "uuid" in lower or (lower.endswith("_id") and len(lower) > 10):
        return ParamType.UUID
    if "id" in lower or "count" in lower or "num" in lower:
        return ParamType.INTEGER
    if "enabled" in lower or "active" in lower or "flag" in lower:
        return ParamType.BOOLEAN
    return ParamType.STRING


def extract_path_params(path: str) -> List[PathParam]:
    """Derive path parameters from whole-segment `{name}` placeholders."""
    params = []
    for segment in path.split("/"):
        if len(segment) > 2 and segment.startswith("{") and segment.endswith("}"):
            name = segment[1:-1]
            params.append(PathParam(name=name, param_type=infer_param_type(name)))
    return params


class Endpoint(BaseModel):
    """An API operation to request. Immutable once parsed."""
    model_config = ConfigDict(frozen=True)

    path: str
    method: HttpMethod = HttpMethod.GET
    path_params: List[PathParam] = Field(default_factory=list)
    request_body_schema: Optional[Any] = None
    request_body_example: Optional[Any] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_path_params(cls, data: Any) -> Any:
        if isinstance(data, dict) and "path_params" not in data and data.get("path"):
            data = {**data, "path_params": extract_path_params(data["path"])}
        return data

    @property
    def key(self) -> str:
        """Lookup key for per-endpoint overrides, e.g. 'POST /api/users'."""
        return f"{self.method.value} {self.path}"

    def resolve_path(self, overrides: Optional[Dict[str, str]] = None) -> str:
        """Substitute each placeholder with its override or typed default."""
        overrides = overrides or {}
        resolved = self.path
        for param in self.path_params:
            value = overrides.get(param.name, param.default_value())
            resolved = resolved.replace(f"{{{param.name}}}", value)
        return resolved

    def display_path(self) -> str:
        return f"{self.method.value:6} {self.path}"


# --- Vulnerability Models ---

class EvidenceType(str, Enum):
    """What kind of comparison produced a finding."""
    STATUS_MATRIX = "status_matrix"
    LENGTH_COMPARISON = "length_comparison"
    KEY_COMPARISON = "key_comparison"
    EXTRA_KEYS = "extra_keys"
    SENSITIVE_FIELDS = "sensitive_fields"
    ARRAY_LENGTHS = "array_lengths"
    TIMING_DIFFERENCE = "timing_difference"


class Evidence(BaseModel):
    """Inspectable payload attached to a finding."""
    evidence_type: EvidenceType
    details: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def status_matrix(cls, admin: int, user: int, anon: int) -> "Evidence":
        return cls(
            evidence_type=EvidenceType.STATUS_MATRIX,
            details=f"Admin: {admin}, User: {user}, Anon: {anon}",
            data={"admin": admin, "user": user, "anon": anon},
        )

    @classmethod
    def length_comparison(cls, admin_len: int, user_len: int, ratio: float) -> "Evidence":
        return cls(
            evidence_type=EvidenceType.LENGTH_COMPARISON,
            details=f"Admin: {admin_len} bytes, User: {user_len} bytes ({ratio * 100:.1f}% diff)",
            data={"admin": admin_len, "user": user_len, "ratio": ratio},
        )

    @classmethod
    def key_comparison(cls, admin_keys: List[str], user_keys: List[str]) -> "Evidence":
        return cls(
            evidence_type=EvidenceType.KEY_COMPARISON,
            details=f"Admin keys: {len(admin_keys)}, User keys: {len(user_keys)}",
            data={"admin": sorted(admin_keys), "user": sorted(user_keys)},
        )

    @classmethod
    def extra_keys(cls, keys: List[str]) -> "Evidence":
        keys = sorted(keys)
        return cls(
            evidence_type=EvidenceType.EXTRA_KEYS,
            details=f"Extra keys: {', '.join(keys)}",
            data={"keys": keys},
        )

    @classmethod
    def sensitive_fields(cls, fields: List[str]) -> "Evidence":
        fields = sorted(fields)
        return cls(
            evidence_type=EvidenceType.SENSITIVE_FIELDS,
            details=f"Sensitive fields: {', '.join(fields)}",
            data={"fields": fields},
        )

    @classmethod
    def array_lengths(cls, path: str, admin_len: int, user_len: int) -> "Evidence":
        return cls(
            evidence_type=EvidenceType.ARRAY_LENGTHS,
            details=f"{path}: Admin {admin_len} items, User {user_len} items",
            data={"path": path, "admin": admin_len, "user": user_len},
        )

    @classmethod
    def timing_difference(cls, admin_ms: int, user_ms: int) -> "Evidence":
        return cls(
            evidence_type=EvidenceType.TIMING_DIFFERENCE,
            details=f"Admin: {admin_ms}ms, User: {user_ms}ms",
            data={"admin": admin_ms, "user": user_ms},
        )


class Vulnerability(BaseModel):
    """A classified, evidenced indicator of an access-control weakness."""
    severity: Severity
    vuln_type: VulnType
    description: str
    evidence: Evidence


# --- Response and Result Models ---

class ResponseInfo(BaseModel):
    """Outcome of one request. Status 0 means the request never completed."""
    status: int = 0
    size: int = 0
    body: Optional[Any] = None
    keys: List[str] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "ResponseInfo":
        if self.error is not None and (self.status != 0 or self.body is not None):
            raise ValueError("a transport error carries neither a status nor a body")
        if self.body is not None and json_depth(self.body) > MAX_JSON_DEPTH:
            self.body = None
            self.keys = []
        if self.body is not None and not self.keys:
            self.keys = sorted(extract_key_paths(self.body))
        return self

    @classmethod
    def from_error(cls, message: str, duration_ms: int = 0) -> "ResponseInfo":
        return cls(error=message, duration_ms=duration_ms)

    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def is_error(self) -> bool:
        return self.error is not None


class ScanResult(BaseModel):
    """Responses and findings for a single endpoint."""
    endpoint: Endpoint
    responses: Dict[Role, ResponseInfo] = Field(default_factory=dict)
    vulnerabilities: List[Vulnerability] = Field(default_factory=list)
    duration_ms: int = 0

    def with_vulnerabilities(self, vulns: List[Vulnerability]) -> "ScanResult":
        return self.model_copy(update={"vulnerabilities": list(vulns)})

    def get_response(self, role: Role) -> Optional[ResponseInfo]:
        return self.responses.get(role)

    def max_severity(self) -> Optional[Severity]:
        if not self.vulnerabilities:
            return None
        return max((v.severity for v in self.vulnerabilities), key=lambda s: s.rank)

    def is_vulnerable(self) -> bool:
        return bool(self.vulnerabilities)


class ScanSummary(BaseModel):
    """Per-endpoint severity tally for a scan."""
    total_endpoints: int = 0
    total_requests: int = 0
    duration_ms: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    info_count: int = 0
    ok_count: int = 0

    @classmethod
    def from_results(cls, results: List[ScanResult], duration_ms: int = 0) -> "ScanSummary":
        summary = cls(
            total_endpoints=len(results),
            total_requests=len(results) * 3,
            duration_ms=duration_ms,
        )
        counters = {
            Severity.CRITICAL: "critical_count",
            Severity.HIGH: "high_count",
            Severity.MEDIUM: "medium_count",
            Severity.LOW: "low_count",
            Severity.INFO: "info_count",
        }
        for result in results:
            severity = result.max_severity()
            attr = counters[severity] if severity else "ok_count"
            setattr(summary, attr, getattr(summary, attr) + 1)
        return summary


# --- Fuzzing Models ---

class FuzzType(str, Enum):
    """Where a mutation is applied."""
    QUERY_PARAM = "Query Param"
    HEADER = "Header"


class FuzzResult(BaseModel):
    """Outcome of one mutation attempt against one endpoint."""
    endpoint: str
    fuzz_type: FuzzType
    trigger: str
    baseline_status: int
    fuzzed_status: int
    baseline_size: int
    fuzzed_size: int
    vulnerability: Optional[Vulnerability] = None


# --- Configuration Models ---

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


class ScanConfig(BaseModel):
    """Configuration for a differential scan."""
    target: str  # Base URL of the API
    roles: List[RoleConfig] = Field(min_length=1)
    concurrency: int = Field(default=50, ge=1, le=500)
    timeout: int = Field(default=10, ge=1, le=300)
    path_params: Dict[str, str] = Field(default_factory=dict)
    request_bodies: Dict[str, Any] = Field(default_factory=dict)
    ignore_fields: List[str] = Field(default_factory=list)
    public_paths: List[str] = Field(default_factory=list)
    skip_paths: List[str] = Field(default_factory=list)
    length_threshold: float = Field(default=0.05, ge=0.0, le=1.0)
    verify_ssl: bool = True
    custom_headers: Dict[str, str] = Field(default_factory=dict)
    proxy: Optional[str] = None

    @model_validator(mode="after")
    def _check_target(self) -> "ScanConfig":
        if not _URL_RE.match(self.target):
            raise ValueError(f"target must be an http(s) URL: {self.target!r}")
        roles = [rc.role for rc in self.roles]
        if len(roles) != len(set(roles)):
            raise ValueError("at most one configuration per role is allowed")
        return self


class FuzzConfig(BaseModel):
    """Configuration for a fuzz run."""
    target: str
    user: RoleConfig
    concurrency: int = Field(default=20, ge=1, le=500)
    timeout: int = Field(default=10, ge=1, le=300)
    path_params: Dict[str, str] = Field(default_factory=dict)
    verify_ssl: bool = True
    custom_headers: Dict[str, str] = Field(default_factory=dict)
    proxy: Optional[str] = None

    @model_validator(mode="after")
    def _check_target(self) -> "FuzzConfig":
        if not _URL_RE.match(self.target):
            raise ValueError(f"target must be an http(s) URL: {self.target!r}")
        return self
