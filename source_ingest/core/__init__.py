"""Dominio y errores compartidos por conectores y gestor."""
