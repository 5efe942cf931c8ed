"""
Pydantic schemas for model output.

Model JSON is parsed with ``extract_json`` first and then validated here, so
a field that comes back as the wrong type is coerced or defaulted instead of
leaking into the datastore.

Schema groups:
  - Media (MediaPick, ImageVerdict, AssetEnrichment)
  - Artists and managers (NormalizedArtist, ManagerCandidate, ManagerValidation)
  - Labels (LabelCandidate, LabelPolicy, LabelContactCandidate)
  - Freshness and outreach (FreshnessScan, OutreachDraft)
  - Collectives (CollectiveCandidate, CollectiveAnalysis, KeyPersonCandidate,
    CollectiveOutreach)
  - Consolidation (ArtistProfileDraft, AliasSuggestion)
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clamp_score(value) -> int:
    if value is None or value == "":
        return 0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0
    # Some models answer on a 0-1 scale.
    if isinstance(value, float) and 0 < score < 1:
        score *= 100
    return int(max(0, min(100, round(score))))


def _as_list(value) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class _ModelOutput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ────────────────────────────────────────────────────────────────
# Media
# ────────────────────────────────────────────────────────────────

class MediaPick(_ModelOutput):
    """Best image chosen from discovery candidates for one entity."""
    image_url: str = ""
    source_url: str = ""
    alt_text: str = ""
    tags: List[str] = Field(default_factory=list)
    license_status: str = "unknown"
    confidence: int = 0

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class ImageVerdict(_ModelOutput):
    matches: bool = False
    confidence: int = 0
    reason: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)


class AssetEnrichment(_ModelOutput):
    """Vision model description of a selected image."""
    alt_text: str = Field(default="", alias="altText")
    tags: List[str] = Field(default_factory=list)
    description: str = ""
    mood: str = ""
    era: str = ""
    equipment: List[str] = Field(default_factory=list)
    setting: str = ""

    @field_validator("tags", "equipment", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


# ────────────────────────────────────────────────────────────────
# Artists and managers
# ────────────────────────────────────────────────────────────────

class NormalizedArtist(_ModelOutput):
    artist_name: str
    artist_aliases: List[str] = Field(default_factory=list)
    region_focus: str = ""
    country_base: str = ""
    city_base: str = ""
    active_status: str = "uncertain"
    evidence_of_activity: str = ""
    verification_confidence: int = 0

    @field_validator("verification_confidence", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)

    @field_validator("artist_aliases", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class ManagerCandidate(_ModelOutput):
    manager_name: str = ""
    manager_role: str = ""
    management_company: str = ""
    company_website: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_form_url: Optional[str] = None
    region_coverage: str = ""
    data_source_url: str = ""


class ManagerValidation(_ModelOutput):
    is_primary_manager: bool = False
    confidence: int = 0
    what_they_like: str = ""
    what_they_dislike: str = ""
    best_approach_notes: str = ""
    outreach_channel_preference: str = ""
    collaboration_policy_summary: str = ""
    red_flags: List[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)

    @field_validator("red_flags", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


# ────────────────────────────────────────────────────────────────
# Labels
# ────────────────────────────────────────────────────────────────

class LabelCandidate(_ModelOutput):
    label_name: str = ""
    label_type: str = ""
    label_website_url: str = ""
    headquarters_country: str = ""
    general_email: Optional[str] = None
    relationship_type: str = "recent"
    evidence_url: str = ""


class LabelPolicy(_ModelOutput):
    collaboration_openness_score: int = 50
    preferred_collaboration_types: List[str] = Field(default_factory=list)
    what_they_like: str = ""
    what_they_dislike: str = ""
    best_approach_notes: str = ""
    red_flags: List[str] = Field(default_factory=list)

    @field_validator("collaboration_openness_score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)

    @field_validator("preferred_collaboration_types", "red_flags", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class LabelContactCandidate(_ModelOutput):
    contact_person_name: str = ""
    role_title: str = ""
    department: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    source_url: str = ""


# ────────────────────────────────────────────────────────────────
# Freshness and outreach
# ────────────────────────────────────────────────────────────────

class FreshnessScan(_ModelOutput):
    is_current: bool = False
    activity_level: str = "low"
    recent_changes_detected: List[str] = Field(default_factory=list)
    freshness_confidence: int = 0
    needs_update: bool = False
    update_priority: str = "low"

    @field_validator("freshness_confidence", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)

    @field_validator("recent_changes_detected", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class OutreachDraft(_ModelOutput):
    email_subject: str = ""
    email_body: str = ""
    dm_script: str = ""
    follow_up_email: str = ""
    key_talking_points: List[str] = Field(default_factory=list)
    recommended_timing: str = ""
    follow_up_cadence: str = ""

    @field_validator("key_talking_points", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


# ────────────────────────────────────────────────────────────────
# Collectives
# ────────────────────────────────────────────────────────────────

class CollectiveCandidate(_ModelOutput):
    collective_name: str = Field(default="", alias="name")
    collective_type: List[str] = Field(default_factory=list)
    region: str = ""
    country: str = ""
    city: str = ""
    website_url: str = ""
    activity_evidence: str = ""

    @field_validator("collective_type", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class CollectiveAnalysis(_ModelOutput):
    philosophy_summary: str = ""
    what_they_like: str = ""
    what_they_dislike: str = ""
    key_people: List[str] = Field(default_factory=list)
    activity_evidence: str = ""
    is_active: bool = False
    recent_events: bool = False
    community_driven: bool = False
    educational_content: bool = False
    confidence: int = 0

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)

    @field_validator("key_people", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class KeyPersonCandidate(_ModelOutput):
    person_name: str = ""
    role_title: str = ""
    email: Optional[str] = None
    social_links: dict = Field(default_factory=dict)
    preferred_contact_method: str = ""

    @field_validator("social_links", mode="before")
    @classmethod
    def coerce_links(cls, v):
        if isinstance(v, dict):
            return v
        return {str(i): link for i, link in enumerate(_as_list(v))}


class CollectiveOutreach(_ModelOutput):
    email_subject: str = ""
    email_body: str = ""
    dm_text: str = ""
    proposal_summary: str = ""
    next_steps: List[str] = Field(default_factory=list)

    @field_validator("next_steps", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


# ────────────────────────────────────────────────────────────────
# Consolidation
# ────────────────────────────────────────────────────────────────

class ArtistProfileDraft(_ModelOutput):
    bio_short: str = ""
    bio_long: str = ""
    subgenres: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    known_for: str = ""
    career_highlights: List[str] = Field(default_factory=list)
    influences: List[str] = Field(default_factory=list)
    collaborators: List[str] = Field(default_factory=list)

    @field_validator(
        "subgenres", "labels", "career_highlights", "influences", "collaborators",
        mode="before",
    )
    @classmethod
    def coerce_list(cls, v):
        return _as_list(v)


class AliasSuggestion(_ModelOutput):
    name: str = ""
    type: str = "alias"
