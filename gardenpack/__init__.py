from gardenpack.models import (
    Bed,
    BedShape,
    PackingResult,
    Placement,
    PlantGroup,
    PlantRequest,
    group_plants_by_type,
)
from gardenpack.packer import HierarchicalCirclePacker
from gardenpack.parallel import pack_beds
