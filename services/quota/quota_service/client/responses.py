"""
ABOUTME: Tagged response variants for quota service calls
ABOUTME: Bodies are validated into Ok[model] or Err at the client boundary
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    status_code: int = 200


@dataclass(frozen=True)
class Err:
    """
    Failed call

    ``status_code`` is 0 when the service could not be reached at all.
    """

    message: str
    status_code: int = 0
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_unavailable(self) -> bool:
        return self.status_code == 0 or self.status_code >= 500


QuotaResponse = Union[Ok[T], Err]


def decode(response: httpx.Response, model: Type[T]) -> "QuotaResponse[T]":
    """Turn an HTTP response into Ok(model) or Err"""
    try:
        body = response.json()
    except ValueError:
        return Err(message="Response is not JSON", status_code=response.status_code)

    if not isinstance(body, dict):
        return Err(message="Unexpected response shape", status_code=response.status_code)

    if response.is_success:
        try:
            return Ok(value=model.model_validate(body), status_code=response.status_code)
        except ValidationError as e:
            return Err(
                message=f"Malformed {model.__name__} response: {e.error_count()} invalid field(s)",
                status_code=response.status_code,
                body=body,
            )

    return Err(
        message=str(body.get("error") or f"Request failed with status {response.status_code}"),
        status_code=response.status_code,
        body=body,
    )
