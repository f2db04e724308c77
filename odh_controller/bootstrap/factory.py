"""
Operator factory.

Maps an operator kind to an implementation. The set of kinds is closed;
anything outside it is rejected rather than defaulted.
"""

from enum import Enum
from typing import Optional, Union

from odh_controller.bootstrap.errors import OperatorNotImplemented, UnknownOperatorKind
from odh_controller.bootstrap.operator import MainOperator, Operator
from odh_controller.handlers.registry import ComponentHandler, HandlerRegistry, ServiceHandler
from odh_controller.services.config import Config


class OperatorKind(str, Enum):
    MAIN = "main"
    CLOUD_MANAGER = "cloud-manager"


class Factory:
    """Creates operators that share one configuration and handler set."""

    def __init__(
        self,
        config: Config,
        services: Optional[HandlerRegistry[ServiceHandler]] = None,
        components: Optional[HandlerRegistry[ComponentHandler]] = None,
    ):
        self.config = config
        self.services = services
        self.components = components

    def create(self, kind: Union[OperatorKind, str]) -> Operator:
        try:
            kind = OperatorKind(kind)
        except ValueError:
            raise UnknownOperatorKind(kind) from None

        if kind is OperatorKind.MAIN:
            return MainOperator(self.config, services=self.services, components=self.components)
        if kind is OperatorKind.CLOUD_MANAGER:
            raise OperatorNotImplemented(kind.value)
        raise UnknownOperatorKind(kind.value)
