"""
Verify package structure and module imports.
Ensures that the application modules can be imported without syntax errors,
confirming correct package setup and path configuration.
"""

def test_server_imports():
    """Assert that the server modules can be imported without syntax errors."""
    try:
        import hub_gpio_ctrl.server.main
        import hub_gpio_ctrl.server.mqtt
        import hub_gpio_ctrl.server.hardware
        import hub_gpio_ctrl.server.dispatcher
        import hub_gpio_ctrl.server.registry
        import hub_gpio_ctrl.server.decoder
        import hub_gpio_ctrl.server.pins
        import hub_gpio_ctrl.server.config_loader
        import hub_gpio_ctrl.server.models
        import hub_gpio_ctrl.server.errors
        success = True
    except ImportError as e:
        success = False
        print(f"Server Import Failed: {e}")

    assert success is True


def test_version_is_exposed():
    import hub_gpio_ctrl

    assert hub_gpio_ctrl.__version__
