"""Saga Orchestration Controller and its compensation pass."""

from sagaflow.saga.compensation import CompensationController, CompensationResult
from sagaflow.saga.controller import SagaController

__all__ = ["CompensationController", "CompensationResult", "SagaController"]
