import asyncio
import copy
import time
from collections.abc import Callable

import structlog

from agriadmin.core.exceptions import ValidationError
from agriadmin.schemas.settings import AgeRange, AgeValidation, parse_age_settings
from agriadmin.services.code_formats import CodeFormatRegistry, coerce_payload

logger = structlog.get_logger()

DEFAULT_USER_TYPE = "farmer"

DEFAULT_AGE_SETTINGS = {
    "farmer": AgeRange(min=18, max=100),
    "employee": AgeRange(min=21, max=65),
    "admin": AgeRange(min=25, max=60),
}

EMPLOYEE_EDUCATION = [
    "Secondary (9-10)",
    "Higher Secondary (11-12)",
    "Graduate",
    "Post Graduate",
    "Professional",
]
ADMIN_EDUCATION = ["Graduate", "Post Graduate", "Professional"]

DEFAULT_EDUCATION = {
    "farmer": [
        "Illiterate",
        "Primary (1-5)",
        "Middle (6-8)",
        *EMPLOYEE_EDUCATION,
    ],
    "employee": list(EMPLOYEE_EDUCATION),
    "admin": list(ADMIN_EDUCATION),
}

DEFAULT_CROP_NAMES = [
    "Rice", "Wheat", "Maize", "Cotton", "Sugarcane", "Potato",
    "Tomato", "Onion", "Brinjal", "Okra", "Cabbage", "Cauliflower",
]

DEFAULT_CROP_TYPES = [
    "Cereals", "Pulses", "Oilseeds", "Cash Crops", "Vegetables",
    "Fruits", "Spices", "Medicinal Plants", "Fodder Crops",
]

UPDATE_KINDS = ("age", "education", "cropNames", "cropTypes", "codeFormats")


def distribute_education(types: list[str]) -> dict[str, list[str]]:
    """Split one flat education list into the per-user-type lists forms expect."""
    return {
        "farmer": list(types),
        "employee": [t for t in types if t in EMPLOYEE_EDUCATION],
        "admin": [t for t in types if t in ADMIN_EDUCATION],
    }


class ConfigurationStore:
    """Cached system-wide settings shared by every form.

    Loaded data stays fresh for `CONFIG_CACHE_TTL_SECONDS`. Each category loads
    independently and keeps its defaults when the backend fails or sends nothing.
    """

    def __init__(self, api, *, clock: Callable[[], float] = time.monotonic):
        self.api = api
        self.ttl = api.settings.CONFIG_CACHE_TTL_SECONDS
        self._clock = clock
        self._lock = asyncio.Lock()
        self.age_settings: dict[str, AgeRange] = copy.deepcopy(DEFAULT_AGE_SETTINGS)
        self.education: dict[str, list[str]] = copy.deepcopy(DEFAULT_EDUCATION)
        self.crop_names: list[str] = list(DEFAULT_CROP_NAMES)
        self.crop_types: list[str] = list(DEFAULT_CROP_TYPES)
        self.code_formats = CodeFormatRegistry()
        self.last_updated: float | None = None
        self.failed_categories: list[str] = []

    def is_fresh(self) -> bool:
        return self.last_updated is not None and self._clock() - self.last_updated < self.ttl

    async def load(self, force_refresh: bool = False) -> bool:
        """Refresh from the backend. Returns False when the cached copy was still fresh."""
        if not force_refresh and self.is_fresh():
            return False

        async with self._lock:
            # A concurrent caller may have refreshed while we waited.
            if not force_refresh and self.is_fresh():
                return False

            ages, education, crop_names, crop_types, code_formats = await asyncio.gather(
                self.api.get_age_settings(),
                self.api.get_education_types(),
                self.api.get_crop_names(),
                self.api.get_crop_types(),
                self.api.get_all_code_formats(),
                return_exceptions=True,
            )
            self.failed_categories = []

            if self._usable("age", ages):
                self.age_settings = ages
            if self._usable("education", education):
                self.education = (
                    education if isinstance(education, dict) else distribute_education(education)
                )
            if self._usable("cropNames", crop_names):
                self.crop_names = crop_names
            if self._usable("cropTypes", crop_types):
                self.crop_types = crop_types
            if self._usable("codeFormats", code_formats):
                self.code_formats.replace(code_formats)

            self.last_updated = self._clock()
            logger.info("configuration_loaded", fallbacks=self.failed_categories)
            return True

    def _usable(self, category: str, result) -> bool:
        if isinstance(result, BaseException):
            logger.warning("configuration_category_failed", category=category, error=str(result))
            self.failed_categories.append(category)
            return False
        if not result:
            logger.warning("configuration_category_empty", category=category)
            self.failed_categories.append(category)
            return False
        return True

    async def update(self, kind: str, data):
        """Persist one category, apply it locally right away, then force a reload."""
        if kind not in UPDATE_KINDS:
            raise ValidationError(f"Unknown configuration type: {kind}", field="type")

        try:
            if kind == "age":
                response = await self.api.create_age_setting(data)
                self.age_settings = {**self.age_settings, **parse_age_settings(data)}
            elif kind == "education":
                response = await self.api.create_global_area_setting({"type": "education", "data": data})
                self.education = data if isinstance(data, dict) else distribute_education(data)
            elif kind == "cropNames":
                response = await self.api.create_crop_setting({"type": "names", "data": data})
                self.crop_names = list(data)
            elif kind == "cropTypes":
                response = await self.api.create_crop_setting({"type": "types", "data": data})
                self.crop_types = list(data)
            else:
                payload = coerce_payload(data)
                self.code_formats.ensure_available(payload.code_type)
                response = await self.api.create_code_format(payload)
                self.code_formats.register(response)
        except Exception as e:
            logger.error("configuration_update_failed", kind=kind, error=str(e))
            raise

        logger.info("configuration_updated", kind=kind)
        await self.load(force_refresh=True)
        return response

    def _bounds_for(self, user_type: str | None) -> tuple[str, AgeRange | None]:
        normalized = (user_type or DEFAULT_USER_TYPE).lower()
        if normalized in self.age_settings:
            return normalized, self.age_settings[normalized]
        return DEFAULT_USER_TYPE, self.age_settings.get(DEFAULT_USER_TYPE)

    def validate_age(self, age: int, user_type: str = DEFAULT_USER_TYPE) -> AgeValidation:
        resolved, bounds = self._bounds_for(user_type)
        if bounds is None:
            return AgeValidation(is_valid=True, message="No age restrictions configured")
        if age < bounds.min:
            return AgeValidation(
                is_valid=False,
                message=f"Age must be at least {bounds.min} years for {resolved} registration",
            )
        if age > bounds.max:
            return AgeValidation(
                is_valid=False,
                message=f"Age must not exceed {bounds.max} years for {resolved} registration",
            )
        return AgeValidation(is_valid=True, message="Age is valid")

    def education_types_for(self, user_type: str = DEFAULT_USER_TYPE) -> list[str]:
        normalized = (user_type or DEFAULT_USER_TYPE).lower()
        return self.education.get(normalized) or self.education.get(DEFAULT_USER_TYPE, [])

    def get(self, kind: str):
        return {
            "ageSettings": self.age_settings,
            "educationRequirements": self.education,
            "cropNames": self.crop_names,
            "cropTypes": self.crop_types,
            "codeFormats": self.code_formats.all(),
        }.get(kind)


_store: ConfigurationStore | None = None


def get_configuration_store(api=None) -> ConfigurationStore:
    """Process-wide store; the first call must supply the API client."""
    global _store
    if _store is None:
        if api is None:
            raise RuntimeError("get_configuration_store() needs an ApiService on first use")
        _store = ConfigurationStore(api)
    return _store


def reset_configuration_store() -> None:
    global _store
    _store = None
