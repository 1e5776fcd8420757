"""IPCR Portal - performance commitment and review workflow service."""
