"""ORM model exports for convenient imports elsewhere in the app."""

from app.models.base import Base
from app.models.cfl_catalog import (
    CflCentroCosto,
    CflCuentaMayor,
    CflDetalleViaje,
    CflEspecie,
    CflTemporada,
    CflTipoFlete,
)
from app.models.cfl_flete import CflCabeceraFlete, CflDetalleFlete, CflFleteSapEntrega
from app.models.cfl_folio import CflFolio
from app.models.cfl_sap import CflSapEntrega, CflSapLikpCurrent, CflSapLipsRaw
from app.models.cfl_security import (
    CflPermiso,
    CflRol,
    CflRolPermiso,
    CflUsuario,
    CflUsuarioRol,
)
from app.models.cfl_transport import (
    CflCamion,
    CflChofer,
    CflEmpresaTransporte,
    CflMovil,
    CflNodoLogistico,
    CflRuta,
    CflTarifa,
    CflTipoCamion,
)

__all__ = [
    "Base",
    "CflCabeceraFlete",
    "CflCamion",
    "CflCentroCosto",
    "CflChofer",
    "CflCuentaMayor",
    "CflDetalleFlete",
    "CflDetalleViaje",
    "CflEmpresaTransporte",
    "CflEspecie",
    "CflFleteSapEntrega",
    "CflFolio",
    "CflMovil",
    "CflNodoLogistico",
    "CflPermiso",
    "CflRol",
    "CflRolPermiso",
    "CflRuta",
    "CflSapEntrega",
    "CflSapLikpCurrent",
    "CflSapLipsRaw",
    "CflTarifa",
    "CflTemporada",
    "CflTipoCamion",
    "CflTipoFlete",
    "CflUsuario",
    "CflUsuarioRol",
]
