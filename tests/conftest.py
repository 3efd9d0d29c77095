"""Shared fixtures: an in-memory vendor with one lab site and its intent file."""
import pytest

from wifimgr.config import Settings
from wifimgr.service import WifiManager
from wifimgr.vendors import APIConfig, ClientRegistry, MockVendorClient


LAB_INTENT = """
version: 1
config:
  sites:
    lab-01:
      api: mist-lab
      site_config:
        name: LAB-01
      devices:
        ap:
          "aa:bb:cc:00:00:01":
            name: AP-1
            radio:
              band_5:
                channel: 36
          "aa:bb:cc:00:00:02":
            name: AP-2
            radio:
              band_5:
                channel: 36
"""


@pytest.fixture
def make_client():
    """Factory for mock clients: make_client(label, vendor, **APIConfig fields)."""
    def _make(label="mist-lab", vendor="mist", capabilities=None, lazy=False, **config_fields):
        config = APIConfig(label=label, vendor=vendor, **config_fields)
        return MockVendorClient(config, capabilities=capabilities, lazy_device_configs=lazy)
    return _make


def _seed_lab(client: MockVendorClient) -> MockVendorClient:
    """LAB-01 with two APs; AP-1 is on channel 40, AP-2 already on 36."""
    site = client.add_site("LAB-01", site_id="site-lab")
    client.add_device(
        "aa:bb:cc:00:00:01", "ap", site.id, "AP-1",
        notes="rack 1", radio={"band_5": {"channel": 40, "power": 12}},
    )
    client.add_device(
        "aa:bb:cc:00:00:02", "ap", site.id, "AP-2",
        radio={"band_5": {"channel": 36, "power": 12}},
    )
    client.add_profile("lab-aps", profile_id="profile-lab")
    client.add_wlan("lab-corp", site_id=site.id)
    return client


@pytest.fixture
def seed_lab():
    return _seed_lab


@pytest.fixture
def lab_client(make_client):
    return _seed_lab(make_client())


@pytest.fixture
def write_intent(tmp_path):
    """Write an intent file into tmp_path/intent and return its path."""
    intent_dir = tmp_path / "intent"
    intent_dir.mkdir(exist_ok=True)

    def _write(text: str, name: str = "lab.yaml"):
        path = intent_dir / name
        path.write_text(text)
        return path
    return _write


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.delenv("WIFIMGR_CACHE_DIR", raising=False)
    (tmp_path / "intent").mkdir(exist_ok=True)
    return Settings.from_dict(
        {
            "files": {"config_dir": "intent", "cache_dir": "cache"},
            "audit": {"enabled": False},
        },
        base_dir=tmp_path,
    )


@pytest.fixture
def lab_intent():
    return LAB_INTENT


@pytest.fixture
def make_wifi(settings):
    """Factory: initialized WifiManager over the given pre-built clients."""
    def _make(*clients):
        registry = ClientRegistry()
        for client in clients:
            registry.add_client(client)
        manager = WifiManager(settings, registry)
        manager.initialize()
        return manager
    return _make


@pytest.fixture
def wifi(make_wifi, lab_client, write_intent):
    """Initialized WifiManager with the lab vendor registered and LAB_INTENT on disk."""
    write_intent(LAB_INTENT)
    return make_wifi(lab_client)
