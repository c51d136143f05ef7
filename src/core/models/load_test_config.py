"""
Load-test configuration as submitted by clients.

Only structural checks live here. Range checks on the load profile are
domain rules enforced by the orchestrator (see core.processing.config_validator)
so that they are reported as InvalidConfig errors with a field and a code.
"""
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoadTestTarget(_CamelModel):
    url: str
    method: HttpMethod = HttpMethod.GET
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("URL must use HTTP or HTTPS protocol")
        return value


class LoadProfile(_CamelModel):
    virtual_users: int
    ramp_up_time: int = 0
    duration: int
    request_rate: Optional[float] = Field(default=None, gt=0)


class NoAuth(_CamelModel):
    type: Literal["none"] = "none"


class BearerAuth(_CamelModel):
    type: Literal["bearer"]
    token: str = Field(min_length=1)


class ApiKeyAuth(_CamelModel):
    type: Literal["apikey"]
    api_key: str = Field(min_length=1)
    api_key_header: str = Field(min_length=1)


class BasicAuth(_CamelModel):
    type: Literal["basic"]
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


AuthenticationConfig = Annotated[
    Union[NoAuth, BearerAuth, ApiKeyAuth, BasicAuth],
    Field(discriminator="type"),
]


class LoadTestOptions(_CamelModel):
    keep_alive: bool = True
    randomized_delays: bool = False
    timeout: int = Field(default=30000, ge=1000, le=300000)  # milliseconds
    follow_redirects: bool = True
    validate_ssl: bool = True


class LoadTestConfig(_CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    target: LoadTestTarget
    load: LoadProfile
    authentication: AuthenticationConfig = Field(default_factory=NoAuth)
    options: LoadTestOptions = Field(default_factory=LoadTestOptions)
