"""
Import guard: key modules must import without ImportError.

Fast, simple test to catch regressions in import cycles.
"""


def test_import_main():
    import app.main  # noqa: F401

    assert app.main.app is not None


def test_import_agent_api():
    import app.api.agent  # noqa: F401


def test_import_admin_api():
    import app.api.admin  # noqa: F401


def test_import_booking_orchestrator():
    import app.services.booking_orchestrator  # noqa: F401


def test_import_state_machine():
    import app.services.state_machine  # noqa: F401


def test_import_handoff_service():
    import app.services.handoff_service  # noqa: F401


def test_import_openai_classifier():
    import app.services.intent.openai_classifier  # noqa: F401
