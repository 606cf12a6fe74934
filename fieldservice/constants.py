"""
Domain vocabulary shared by the filter engine, aggregations and mutations.

Values are the literal strings stored in the database and shown to users.
"""

# Service orders
ORDER_STATUSES = ["Pendiente", "En Progreso", "Completada", "Facturado", "Cancelado"]
OPEN_ORDER_STATUSES = ["Pendiente", "En Progreso"]
ORDER_TYPES = ["Instalacion", "Visita", "Service", "Mantenimiento"]
DEFAULT_ORDER_STATUS = "Pendiente"
DEFAULT_ORDER_TYPE = "Service"

# Reminders
REMINDER_TYPES = ["Visita", "Service", "Entrega de reactivo", "Instalacion", "Falta de repuesto"]
REMINDER_STATUSES = ["Pendiente", "Completado"]
REAGENT_DELIVERY_REMINDER = "Entrega de reactivo"
# "Faltante" is the legacy spelling still present in older rows
MISSING_PART_REMINDER_TYPES = ["Falta de repuesto", "Faltante"]

# Pending reagent deliveries
PENDING_DELIVERY_STATUSES = ["Pendiente", "En Ruta", "Entregado", "Cancelado"]
PENDING_DELIVERY_TRANSITIONS = {
    "Pendiente": ["En Ruta", "Cancelado"],
    "En Ruta": ["Entregado", "Cancelado"],
    "Entregado": [],  # Terminal state
    "Cancelado": []  # Terminal state
}
UNKNOWN_REAGENT_SIZE = "N/A"

# Equipment status (derived, never stored)
EQUIPMENT_OK = "En Funcionamiento"
EQUIPMENT_ALERT = "Alerta Pendiente"


def can_transition_delivery(current_status: str, new_status: str) -> bool:
    """Check if a pending delivery status transition is valid"""
    if current_status == new_status:
        return True
    valid_transitions = PENDING_DELIVERY_TRANSITIONS.get(current_status, [])
    return new_status in valid_transitions
