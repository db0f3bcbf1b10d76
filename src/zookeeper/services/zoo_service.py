from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Union

import aiohttp

from zookeeper.config import DEFAULT_ZOO_API_BASE_URL, Settings

FETCH_TIMEOUT_SEC = 15


class ZooFetchError(RuntimeError):
    """The profile service could not be reached or answered with garbage."""


@dataclass
class ZooAnimal:
    name: str
    emoji: str
    amount: int
    family: str = ""
    rare: bool = False


@dataclass
class ZooProfile:
    profile_id: str
    name: str
    user_id: str = ""
    selected_profile: str = ""
    profiles: list[str] = field(default_factory=list)
    animals: list[ZooAnimal] = field(default_factory=list)

    def find_animal(self, query: str) -> ZooAnimal | None:
        needle = query.strip().casefold()
        if not needle:
            return None
        for animal in self.animals:
            if animal.name.casefold() == needle:
                return animal
        return None


@dataclass
class ZooInvalid:
    """Client-side validation error (unknown user, private zoo, bad profile)."""

    name: str
    msg: str
    login: bool = False
    invalid: bool = False
    error: str = ""


@dataclass
class ZooApiError:
    api_error: bool
    internal_error: bool
    message: str


ZooProfileResult = Union[ZooProfile, ZooInvalid, ZooApiError]


def profile_url(user_id: int, profile: str | None = None, base_url: str = DEFAULT_ZOO_API_BASE_URL) -> str:
    if profile:
        return f"{base_url}/{user_id}_{profile}"
    return f"{base_url}/{user_id}"


def profile_api_url(user_id: int, profile: str | None = None, base_url: str = DEFAULT_ZOO_API_BASE_URL) -> str:
    if profile:
        return f"{base_url}/api/profile/{user_id}_{profile}"
    return f"{base_url}/api/profile/{user_id}"


def parse_profile_response(text: str) -> ZooProfileResult:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ZooFetchError(f"Response is not JSON: {text[:300]}") from exc
    if not isinstance(payload, dict):
        raise ZooFetchError(f"Unexpected response body: {text[:300]}")
    if "profileID" in payload:
        return _profile_from_payload(payload)
    if "apiError" in payload:
        return ZooApiError(
            api_error=bool(payload.get("apiError")),
            internal_error=bool(payload.get("internalError")),
            message=str(payload.get("message", "")),
        )
    if "error" in payload or "msg" in payload:
        return ZooInvalid(
            name=str(payload.get("name", "")),
            msg=str(payload.get("msg", "")),
            login=bool(payload.get("login", False)),
            invalid=bool(payload.get("invalid", False)),
            error=str(payload.get("error", "")),
        )
    raise ZooFetchError(f"Unrecognized response body: {text[:300]}")


def _profile_from_payload(payload: dict[str, Any]) -> ZooProfile:
    animals: list[ZooAnimal] = []
    for row in payload.get("animals", []) or []:
        if not isinstance(row, dict):
            continue
        animals.append(
            ZooAnimal(
                name=str(row.get("name", "")),
                emoji=str(row.get("emoji", "")),
                amount=int(row.get("amount", 0) or 0),
                family=str(row.get("family", "")),
                rare=bool(row.get("rare", False)),
            )
        )
    return ZooProfile(
        profile_id=str(payload.get("profileID", "")),
        name=str(payload.get("name", "")),
        user_id=str(payload.get("userID", "")),
        selected_profile=str(payload.get("selectedProfile", "")),
        profiles=[str(p) for p in payload.get("profiles", []) or []],
        animals=animals,
    )


def describe_failure(result: ZooInvalid | ZooApiError) -> str:
    if isinstance(result, ZooInvalid):
        return result.error or result.msg or result.name or "invalid profile"
    return result.message or "profile service error"


class ZooService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def base_url(self) -> str:
        return (self.settings.zoo_api_base_url or DEFAULT_ZOO_API_BASE_URL).rstrip("/")

    def profile_url(self, user_id: int, profile: str | None = None) -> str:
        return profile_url(user_id, profile, self.base_url)

    async def fetch_profile(self, user_id: int, profile: str | None = None) -> ZooProfileResult:
        url = profile_api_url(user_id, profile, self.base_url)
        timeout = aiohttp.ClientTimeout(total=FETCH_TIMEOUT_SEC)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ZooFetchError(f"GET {url} failed: {exc}") from exc
        return parse_profile_response(body)
