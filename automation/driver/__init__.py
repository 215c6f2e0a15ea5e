"""Browser drivers for the facility reservation flow."""

from automation.driver.protocol import DriverResult, PageAutomationDriver

__all__ = ["DriverResult", "PageAutomationDriver"]
