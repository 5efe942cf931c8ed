"""
Root conftest for the enrichment agents test suite.

Handles:
- Django settings configuration (config.test_settings, no provider keys)
- In-memory store, scripted AI and fake discovery fixtures
- Shared sample entities for the pipeline tests
"""

import os

import pytest
from unittest.mock import patch

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')

from agents.enrichment.pipelines.base import PipelineContext  # noqa: E402
from agents.enrichment.provider_config import ProviderConfig  # noqa: E402
from agents.enrichment.rate_limiter import NullRateLimiter  # noqa: E402
from agents.tests.fakes import FakeDiscovery, FakeStore, ScriptedAI  # noqa: E402

# One distinct model id per role so consensus calls can be told apart.
TEST_MODEL_ROLES = {
    'extraction': 'test/extraction',
    'validation': 'test/validation',
    'consensus_a': 'test/consensus_a',
    'consensus_b': 'test/consensus_b',
    'discovery': 'test/discovery',
    'drafting': 'test/drafting',
    'vision': 'test/vision',
    'image_generation': 'test/image_generation',
}

TEST_PIPELINE_SETTINGS = {
    'min_confidence': 60,
    'manager_min_confidence': 50,
    'collective_min_confidence': 50,
    'media_batch_size': 5,
    'queue_page_size': 100,
    'media_verify_images': False,
    'consensus_agreement_fields': {},
}


# ---------------------------------------------------------------------------
# Alerting
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def mock_send_alert():
    """Pipeline failures raise alerts; keep them off the network in tests."""
    with patch('agents.enrichment.pipelines.base.send_alert') as mock_alert:
        yield mock_alert


# ---------------------------------------------------------------------------
# Providers and store
# ---------------------------------------------------------------------------

@pytest.fixture
def provider_config():
    return ProviderConfig(
        ai_api_key='test-ai-key',
        discovery_api_key='test-firecrawl-key',
        model_roles=TEST_MODEL_ROLES,
        model_fallbacks={},
        rate_limits={},
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def ai(provider_config):
    return ScriptedAI(provider_config)


@pytest.fixture
def discovery():
    return FakeDiscovery()


@pytest.fixture
def pipeline_settings():
    return dict(TEST_PIPELINE_SETTINGS)


@pytest.fixture
def ctx(store, provider_config, ai, discovery, pipeline_settings):
    return PipelineContext(
        store=store,
        config=provider_config,
        ai=ai,
        discovery=discovery,
        rate_limiter=NullRateLimiter(),
        settings=pipeline_settings,
    )


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_dj_artists():
    return [
        {'id': 'a1', 'artist_name': 'Surgeon', 'real_name': 'Anthony Child', 'nationality': 'UK',
         'subgenres': ['industrial techno'], 'labels': ['Dynamic Tension']},
        {'id': 'a2', 'artist_name': 'Paula Temple', 'nationality': 'UK',
         'subgenres': ['industrial techno'], 'labels': ['Noise Manifesto']},
        {'id': 'a3', 'artist_name': 'Jeff Mills', 'nationality': 'US',
         'subgenres': ['detroit techno'], 'labels': ['Axis']},
    ]


@pytest.fixture
def sample_active_artists():
    return [
        {'id': 'x1', 'artist_name': 'Surgeon', 'active_status': 'active', 'region_focus': 'Europe',
         'last_verified_at': None, 'verification_confidence': 70},
        {'id': 'x2', 'artist_name': 'Paula Temple', 'active_status': 'active', 'region_focus': 'Europe',
         'last_verified_at': None, 'verification_confidence': 80},
    ]
