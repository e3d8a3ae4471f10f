"""Runtime de fuentes de datos del historian.

Conectores por protocolo, normalización a lecturas etiquetadas,
persistencia y el gestor de ciclo de vida de las fuentes.
"""

__version__ = "0.4.0"
