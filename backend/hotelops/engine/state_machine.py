"""
engine/state_machine.py

状态机引擎 - 支持转换守卫和副作用
"""
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, field
import logging
import time

from hotelops.errors import InvalidTransition

logger = logging.getLogger(__name__)


def _label(state: Any) -> str:
    return getattr(state, "value", state)


Guard = Callable[[Dict[str, Any]], None]
SideEffect = Callable[[Dict[str, Any]], None]


@dataclass
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
        guards: 守卫函数列表，不满足条件时抛出业务异常
        side_effects: 副作用函数列表，在状态写入后按顺序执行
    """

    from_state: str
    to_state: str
    trigger: str
    guards: List[Guard] = field(default_factory=list)
    side_effects: List[SideEffect] = field(default_factory=list)

    def check_guards(self, context: Dict[str, Any]) -> None:
        """依次执行守卫，任一失败即抛出"""
        for guard in self.guards:
            guard(context)

    def execute_side_effects(self, context: Dict[str, Any]) -> None:
        """执行副作用（异常向上传播，由调用方回滚事务）"""
        for effect in self.side_effects:
            effect(context)


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称
        states: 所有状态的列表
        transitions: 转换列表
        initial_state: 初始状态
        final_states: 终态列表，终态没有任何出边
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str
    final_states: List[str] = field(default_factory=list)


@dataclass
class StateMachineSnapshot:
    """状态机快照 - 用于审计"""

    previous_state: str
    current_state: str
    trigger: str
    timestamp: float


class StateMachine:
    """
    状态机引擎

    特性：
    - 终态保护
    - 守卫检查（抛出类型化异常）
    - 副作用执行
    - 历史记录

    Example:
        >>> machine = StateMachine(config, current_state="Pending")
        >>> machine.transition_to("Confirmed", context={"booking": booking})
    """

    def __init__(self, config: StateMachineConfig, current_state: Optional[str] = None):
        self._config = config
        self._current_state = current_state or config.initial_state
        self._history: List[StateMachineSnapshot] = []
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        # 构建转换映射: from_state -> {to_state: transition}
        for t in config.transitions:
            if t.from_state in config.final_states:
                raise ValueError(f"{config.name}: 终态 {t.from_state} 不能定义出边")
            self._transition_map.setdefault(t.from_state, {})[t.to_state] = t

    @property
    def current_state(self) -> str:
        """获取当前状态"""
        return self._current_state

    @property
    def config(self) -> StateMachineConfig:
        return self._config

    @property
    def final_states(self) -> List[str]:
        return list(self._config.final_states)

    @property
    def history(self) -> List[StateMachineSnapshot]:
        return list(self._history)

    def is_final(self, state: Optional[str] = None) -> bool:
        return (state or self._current_state) in self._config.final_states

    def get_transition(self, target_state: str) -> Optional[StateTransition]:
        """获取从当前状态到目标状态的转换定义"""
        return self._transition_map.get(self._current_state, {}).get(target_state)

    def available_targets(self) -> List[str]:
        """当前状态可以到达的目标状态（不含守卫检查）"""
        return list(self._transition_map.get(self._current_state, {}).keys())

    def is_valid_transition(self, from_state: str, to_state: str) -> bool:
        """仅检查转换表中是否存在这条边"""
        return to_state in self._transition_map.get(from_state, {})

    def can_transition_to(self, target_state: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        检查是否可以转换到目标状态（包含守卫）

        Returns:
            True 如果转换表允许且所有守卫通过
        """
        transition = self.get_transition(target_state)
        if transition is None:
            return False
        try:
            transition.check_guards(context or {})
        except Exception:
            return False
        return True

    def transition_to(self, target_state: str, context: Optional[Dict[str, Any]] = None) -> StateTransition:
        """
        执行状态转换

        Raises:
            InvalidTransition: 终态或转换表中不存在该边
            守卫抛出的任何业务异常
        """
        context = context if context is not None else {}

        if target_state not in self._config.states:
            raise InvalidTransition(
                f"未知状态 {_label(target_state)}",
                current_status=_label(self._current_state), target_status=_label(target_state)
            )

        if self.is_final():
            raise InvalidTransition(
                f"{self._config.name} 已处于终态 {_label(self._current_state)}，不允许变更",
                current_status=_label(self._current_state), target_status=_label(target_state)
            )

        transition = self.get_transition(target_state)
        if transition is None:
            logger.warning(
                f"Invalid transition: {_label(self._current_state)} -> {_label(target_state)} ({self._config.name})"
            )
            raise InvalidTransition(
                f"不允许从 {_label(self._current_state)} 变更为 {_label(target_state)}",
                current_status=_label(self._current_state), target_status=_label(target_state)
            )

        transition.check_guards(context)

        previous_state = self._current_state
        self._current_state = target_state
        transition.execute_side_effects(context)

        self._history.append(StateMachineSnapshot(
            previous_state=previous_state,
            current_state=target_state,
            trigger=transition.trigger,
            timestamp=time.time(),
        ))
        logger.info(
            f"State transition: {_label(previous_state)} -> {_label(target_state)} (trigger: {transition.trigger})"
        )
        return transition
