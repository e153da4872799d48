from .triangulation import Triangulation
from .mg_dofhandler import MGDofHandler, LevelMesh
from .constraints import MGConstraints, LevelConstraints, ConstraintEntry
__all__=['Triangulation','MGDofHandler','LevelMesh','MGConstraints','LevelConstraints','ConstraintEntry']
