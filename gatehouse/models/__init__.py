# Gatehouse: Database Models
# Import all models here for SQLAlchemy discovery

from gatehouse.models.visitor import Visitor                          # noqa
from gatehouse.models.vehicle import Vehicle                          # noqa
from gatehouse.models.registro import Registro, RegistroNota          # noqa
from gatehouse.models.registro_visitante import RegistroVisitante     # noqa
from gatehouse.models.registro_vehiculo import RegistroVehiculo       # noqa
from gatehouse.models.card_claim import CardClaim                     # noqa
from gatehouse.models.bitacora import BitacoraEvent                   # noqa
from gatehouse.models.alert import Alert                              # noqa
