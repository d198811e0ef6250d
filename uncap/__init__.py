from uncap.uncap_datatypes import Ref, Out, ResolutionOptions, Uncapsulated, Visibility
from uncap.uncap_errors import (
    UncapsulationError, NullTargetError, StaticOnlyError, MissingMemberError, MissingOverloadError,
    AmbiguousOverloadError, InvalidCastError, UnsupportedUsageError,
)
from uncap.uncap_runtime import (
    Uncapsulator, uncapsulate, uncapsulate_type, clear_cache, unwrap, proxy_of, convert,
    register_bypass, unregister_bypass,
)
from uncap.uncap_dump import dump, snapshot, enable_dump_bypass, disable_dump_bypass
