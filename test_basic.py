"""
Basic import checks for the top-level packages.
"""

def test_basic():
    """Config globals are created at import time."""
    from config import app_config, flow_config
    assert app_config.title
    assert flow_config.first_event_timeout < flow_config.inactivity_timeout

def test_package_imports():
    """Test that every package can be imported without errors."""
    try:
        import accounts
        import flow
        import flow.pipeline
        import live
        import web
        assert hasattr(flow, 'FlowCoordinator')
        assert callable(flow.pipeline.LivePipeline)
        assert hasattr(accounts, 'MultiAccountProvider')
        assert hasattr(live, 'TaskActivityLog')
        assert hasattr(web, 'app')
    except ImportError as e:
        assert False, f"Failed to import: {e}"

def test_pricing_lookup():
    """More specific model names win over their prefixes."""
    from config import context_window_size, estimated_cost
    assert estimated_cost(1_000_000, 0, "gpt-4o-mini") == 0.15
    assert estimated_cost(0, 1_000_000, "claude-3-5-sonnet-20241022") == 15.00
    assert estimated_cost(1_000_000, 1_000_000, "unknown-model") == 4.00
    assert context_window_size("anthropic.claude-3-haiku") == 200000
    assert context_window_size("unknown-model") == 128000

def test_observable_unsubscribe():
    from flow import Observable
    seen = []
    holder = Observable(0)
    unsubscribe = holder.subscribe(seen.append, emit_current=True)
    holder.set(0)
    holder.set(1)
    unsubscribe()
    holder.set(2)
    assert seen == [0, 1]
    assert holder.listener_count == 0
