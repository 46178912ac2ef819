"""Tests for settings, the YAML config service and the config cache."""

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from kpf_wrapper.common.exceptions import (
    ConfigurationError,
    InvalidInputError,
    TunnelNotFoundError,
)
from kpf_wrapper.config import (
    ConfigCache,
    ConfigService,
    SupervisorSettings,
    default_config_dir,
    detect_kubectl_path,
)
from kpf_wrapper.tunnels.models import AppConfig, ForwardType, TunnelConfig


def tunnel(name: str) -> TunnelConfig:
    return TunnelConfig(name=name, namespace="ns", service=f"svc/{name}", ports=["8080:80"])


class TestSupervisorSettings:
    """Test suite for SupervisorSettings."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        settings = SupervisorSettings()

        assert settings.config_dir == tmp_path / "easy-kpf"
        assert settings.state_file == tmp_path / "easy-kpf" / "process-state.json"
        assert settings.event_buffer == 100
        assert settings.kubectl_path is None

    def test_home_fallback(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert default_config_dir() == Path.home() / ".config" / "easy-kpf"

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            SupervisorSettings(colour="blue")

    def test_event_buffer_bounds(self):
        with pytest.raises(ValidationError):
            SupervisorSettings(event_buffer=0)


class TestDetectKubectlPath:
    """Test kubectl auto-detection."""

    @patch("kpf_wrapper.config.shutil.which", return_value="/usr/bin/kubectl")
    def test_which_wins(self, mock_which):
        assert detect_kubectl_path() == "/usr/bin/kubectl"

    @patch("kpf_wrapper.config.KUBECTL_DETECTION_PATHS", ())
    @patch("kpf_wrapper.config.shutil.which", return_value=None)
    def test_falls_back_to_bare_name(self, mock_which):
        assert detect_kubectl_path() == "kubectl"

    @patch("kpf_wrapper.config.shutil.which", return_value=None)
    def test_known_location(self, mock_which, tmp_path):
        kubectl = tmp_path / "kubectl"
        kubectl.touch()

        with patch("kpf_wrapper.config.KUBECTL_DETECTION_PATHS", (str(kubectl),)):
            assert detect_kubectl_path() == str(kubectl)


class TestConfigService:
    """Test suite for the YAML files."""

    def test_missing_tunnels_file_is_created(self, config_dir):
        service = ConfigService(config_dir)

        assert service.load_tunnels() == []
        assert service.tunnels_path.exists()
        assert yaml.safe_load(service.tunnels_path.read_text()) == {"configs": []}

    def test_round_trip(self, config_dir, kubectl_config, ssh_config):
        service = ConfigService(config_dir)
        service.save_tunnels([kubectl_config, ssh_config])

        loaded = service.load_tunnels()

        assert loaded == [kubectl_config, ssh_config]
        assert loaded[1].forward_type is ForwardType.SSH

    def test_forward_type_defaults_to_kubectl(self, config_dir):
        service = ConfigService(config_dir)
        service.tunnels_path.write_text(
            "configs:\n"
            "  - name: db\n"
            "    context: ''\n"
            "    namespace: data\n"
            "    service: svc/postgres\n"
            "    ports: ['5432']\n"
        )

        (config,) = service.load_tunnels()

        assert config.forward_type is ForwardType.KUBECTL
        assert config.local_interface is None

    def test_invalid_yaml(self, config_dir):
        service = ConfigService(config_dir)
        service.tunnels_path.write_text("configs: [unclosed")

        with pytest.raises(ConfigurationError, match="Failed to read"):
            service.load_tunnels()

    def test_invalid_definition(self, config_dir):
        service = ConfigService(config_dir)
        service.tunnels_path.write_text("configs:\n  - name: x\n    ports: ['80']\n")

        with pytest.raises(ConfigurationError, match="Invalid tunnel configuration"):
            service.load_tunnels()

    def test_duplicate_names_not_saved(self, config_dir, kubectl_config):
        with pytest.raises(ConfigurationError):
            ConfigService(config_dir).save_tunnels([kubectl_config, kubectl_config])

    def test_app_config(self, config_dir):
        service = ConfigService(config_dir)

        assert service.load_app_config() == AppConfig()
        assert service.app_config_path.exists()

        service.save_kubectl_path("/opt/bin/kubectl")
        service.save_kubeconfig_path("/home/me/.kube/dev")

        config = service.load_app_config()
        assert config.kubectl_path == "/opt/bin/kubectl"
        assert config.kubeconfig_path == "/home/me/.kube/dev"


class TestConfigCache:
    """Test suite for ConfigCache."""

    @pytest.fixture
    def cache(self, config_dir):
        service = ConfigService(config_dir)
        service.save_tunnels([tunnel("a"), tunnel("b"), tunnel("c")])
        return ConfigCache(service)

    def test_cached_within_ttl(self, cache):
        cache.get_configs()
        with patch.object(cache.config_service, "load_tunnels") as mock_load:
            cache.get_configs()
        mock_load.assert_not_called()

    def test_reloads_after_ttl(self, config_dir):
        cache = ConfigCache(ConfigService(config_dir), ttl=0)
        cache.get_configs()
        with patch.object(cache.config_service, "load_tunnels", return_value=[]) as mock_load:
            assert cache.get_configs() == []
        mock_load.assert_called_once()

    def test_invalidate(self, cache):
        cache.get_configs()
        cache.invalidate()
        with patch.object(cache.config_service, "load_tunnels", return_value=[]) as mock_load:
            cache.get_configs()
        mock_load.assert_called_once()

    def test_find_config(self, cache):
        assert cache.find_config("b").service == "svc/b"
        assert cache.find_config("zzz") is None

    def test_add_config(self, cache):
        cache.add_config(tunnel("d"))

        assert [c.name for c in cache.config_service.load_tunnels()] == ["a", "b", "c", "d"]

    def test_add_duplicate(self, cache):
        with pytest.raises(ConfigurationError, match="already exists"):
            cache.add_config(tunnel("a"))

    def test_remove_config(self, cache):
        cache.remove_config("b")
        assert [c.name for c in cache.get_configs()] == ["a", "c"]

    def test_update_config_in_place(self, cache):
        cache.update_config("b", tunnel("b2"))
        assert [c.name for c in cache.get_configs()] == ["a", "b2", "c"]

    def test_update_unknown(self, cache):
        with pytest.raises(TunnelNotFoundError):
            cache.update_config("zzz", tunnel("zzz"))

    def test_reorder(self, cache):
        cache.reorder_config("c", 0)
        assert [c.name for c in cache.config_service.load_tunnels()] == ["c", "a", "b"]

    def test_reorder_bad_index(self, cache):
        with pytest.raises(InvalidInputError, match="Invalid new index"):
            cache.reorder_config("a", 3)

    def test_reorder_unknown(self, cache):
        with pytest.raises(TunnelNotFoundError):
            cache.reorder_config("zzz", 0)
