"""Core - dominio y validación, sin dependencias de transporte ni de BD."""
