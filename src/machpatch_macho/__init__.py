from machpatch_macho.macho import *
from machpatch_macho.structs import *
from libmach.structs import Struct
