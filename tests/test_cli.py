"""
Unit tests for the command line entry point.
"""

from dashboard_engine import cli


class TestCli:
    """Tests for dashboard_engine.cli."""

    def test_ttl_mode_prints_rules(self, capsys):
        cli.main(["--mode", "ttl", "/api/unit/9", "/api/summary"])

        out = capsys.readouterr().out
        assert "/api/unit/9" in out
        assert "[/api/unit/*]" in out
        assert "1800000 ms" in out
        assert "persistent" in out

    def test_ttl_mode_defaults_to_table(self, capsys):
        cli.main(["--mode", "ttl"])

        out = capsys.readouterr().out
        assert "/api/distritos" in out
        assert "/api/health" in out

    def test_warm_mode(self, fresh_context, capsys):
        cli.main(["--mode", "warm", "/api/distritos", "/api/summary"])

        out = capsys.readouterr().out
        assert "'warmed': ['/api/distritos', '/api/summary']" in out
        assert len(fresh_context.requests) == 2
        assert sorted(fresh_context.store.keys()) == ["/api/distritos", "/api/summary"]
