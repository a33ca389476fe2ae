"""Drive a UCI chess engine running as a child process."""

from ucidriver.analysis import AnalysisController, AnalysisState
from ucidriver.engine import EngineEventSink, QueueEventSink, UciEngine, probe_options
from ucidriver.errors import AnalysisStateError, EngineError, LaunchError, WriteError
from ucidriver.options import EngineOption, OptionKind
from ucidriver.preferences import EnginePreferences, read_preferences
from ucidriver.process import EngineProcess, UciShell
from ucidriver.protocol import AnalysisTarget, UciLine, decode
from ucidriver.registry import AnalysisRegistry, current_analyzing_count

__version__ = "1.0.0"
