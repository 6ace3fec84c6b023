from faultline.checker.dispatch import Analysis, CheckerMode, analyze, build_checkers, select_mode

__all__ = ["Analysis", "CheckerMode", "analyze", "build_checkers", "select_mode"]
