from .state_estimator import FilterConfig, FreewayStateEstimator
from .sysid import FreewaySysId, FundamentalDiagram, SysIdConfig

__all__ = ["FilterConfig", "FreewayStateEstimator", "FreewaySysId", "FundamentalDiagram", "SysIdConfig"]
