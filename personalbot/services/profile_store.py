"""
Profile store.

Holds the single user profile the agents act for. The backing JSON file is
read at startup and on explicit reload; replacements live in memory only.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from personalbot.graph.schemas import UserProfile, Vehicle

logger = logging.getLogger(__name__)


def default_profile() -> UserProfile:
    return UserProfile.model_validate(
        {
            "name": "User",
            "age": 30,
            "location": "Mumbai",
            "occupation": "Professional",
            "cars": [{"make": "Honda", "model": "City", "year": 2020, "isPrimary": True}],
            "family": {"spouse": {"name": "Partner", "age": 28}, "children": 1, "totalDependents": 2},
            "insurance": {"budgetRange": {"min": 15000, "max": 25000}},
            "health": {"smoker": False, "gymMember": True},
            "lifestyle": {"drivingExperience": "10 years", "accidentHistory": "None"},
        }
    )


class ProfileStore:
    """Loads, serves and replaces the user profile."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._profile: UserProfile = self.reload()

    def reload(self) -> UserProfile:
        """Re-read the backing file, falling back to the default profile."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._profile = UserProfile.model_validate(data)
            logger.info("Loaded user profile for %s", self._profile.name)
        except (OSError, ValueError, ValidationError) as exc:
            logger.error("Loading user profile from %s failed: %s", self._path, exc)
            self._profile = default_profile()
        return self._profile

    def get(self) -> UserProfile:
        return self._profile

    def replace(self, profile: UserProfile | dict) -> UserProfile:
        """Swap the whole profile. Raises ValidationError on a bad dict."""
        if not isinstance(profile, UserProfile):
            profile = UserProfile.model_validate(profile)
        self._profile = profile
        logger.info("Replaced user profile for %s", profile.name)
        return profile

    # -- derived views --------------------------------------------------------

    def primary_vehicle(self) -> Vehicle:
        cars = self._profile.cars
        primary = next((car for car in cars if car.is_primary), None)
        if primary is not None:
            return primary
        return cars[0] if cars else Vehicle(make="Honda", model="City", year=2020)

    def budget_range(self) -> str:
        budget = self._profile.insurance.budget_range
        return f"₹{budget.min // 1000}k-{budget.max // 1000}k/year"

    def family_size(self) -> int:
        return self._profile.family.total_dependents + 1

    def summary(self) -> dict:
        """Compact profile view handed to the agents as prompt context."""
        p = self._profile
        return {
            "name": p.name,
            "age": p.age,
            "location": p.location,
            "occupation": p.occupation,
            "income": p.income,
            "cars": [
                f"{c.make} {c.model} {c.year} {c.variant or ''} ({c.registration or 'No reg'})".replace("  ", " ")
                for c in p.cars
            ],
            "family_size": self.family_size(),
            "budget_range": self.budget_range(),
            "preferred_coverage": p.insurance.preferred_coverage,
            "current_policies": p.insurance.current_policies,
            "health_status": "Smoker" if p.health.smoker else "Non-smoker",
            "pre_existing_conditions": p.health.pre_existing_conditions,
            "last_checkup": p.health.last_checkup,
            "driving_experience": p.lifestyle.driving_experience,
            "accident_history": p.lifestyle.accident_history,
        }
