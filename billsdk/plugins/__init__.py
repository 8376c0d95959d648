from billsdk.plugins.time_travel import TimeTravelPlugin

__all__ = ["TimeTravelPlugin"]
