# tests/test_config.py - Tests for configuration management
"""
Unit tests for the Config class.
"""

import pytest

from ftrace_collector.utils.config import Config


class TestConfig:
    """Test cases for Config"""

    def test_defaults(self):
        """Test default values"""
        cfg = Config()

        assert cfg.get('tracer.buffer_size_kb') == 4096
        assert cfg.get('kernel.trace_root') == '/sys/kernel/debug/tracing'
        assert cfg.get('capture.poll_interval_ms') == 100
        assert len(cfg.get('tracer.events')) == 4

    def test_defaults_not_shared(self):
        """Test that changing one config does not leak into another"""
        cfg = Config()
        cfg.get('tracer.events').append('irq:irq_handler_entry')

        assert len(Config().get('tracer.events')) == 4

    def test_load_merges_with_defaults(self, tmp_path):
        """Test that a partial YAML file only overrides what it sets"""
        config_file = tmp_path / 'config.yaml'
        config_file.write_text("tracer:\n  buffer_size_kb: 8192\n")

        cfg = Config(str(config_file))

        assert cfg.get('tracer.buffer_size_kb') == 8192
        assert len(cfg.get('tracer.events')) == 4

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that a missing file is not an error"""
        cfg = Config(str(tmp_path / 'missing.yaml'))

        assert cfg.get('tracer.buffer_size_kb') == 4096

    def test_invalid_yaml(self, tmp_path):
        """Test that a non-mapping file is rejected"""
        config_file = tmp_path / 'config.yaml'
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            Config(str(config_file))

    def test_get_set(self):
        """Test dot-notation access"""
        cfg = Config()
        cfg.set('capture.drain_workers', 4)
        cfg.set('new.section.value', True)

        assert cfg.get('capture.drain_workers') == 4
        assert cfg.get('new.section.value') is True
        assert cfg.get('does.not.exist', 'fallback') == 'fallback'

    def test_save_and_reload(self, tmp_path):
        """Test saving a modified config"""
        cfg = Config()
        cfg.set('tracer.events', ['sched:sched_switch'])
        config_file = tmp_path / 'runs' / 'saved.yaml'

        cfg.save_to_file(str(config_file))
        reloaded = Config(str(config_file))

        assert reloaded.config == cfg.config
        assert reloaded.get('tracer.events') == ['sched:sched_switch']
