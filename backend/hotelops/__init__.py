"""
HotelOps - 酒店预订生命周期与结算引擎
"""
__version__ = "1.0.0"
