"""
engine - 通用引擎组件

- state_machine: 状态机引擎（状态转换与守卫）
"""
from hotelops.engine.state_machine import (
    StateTransition,
    StateMachineConfig,
    StateMachine,
)

__all__ = ["StateTransition", "StateMachineConfig", "StateMachine"]
