"""Interfaces/abstracciones del Core.

Contratos (Protocol) que implementan los adaptadores concretos: el cliente
remoto (`CommandRunner`) y la puerta de confirmación (`ConfirmationGate`).
"""
