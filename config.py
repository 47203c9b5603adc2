import toml
from more_itertools import flatten
from pathlib import Path, PurePath
from twisted.python import log

class GenericDescriptor():
    def __set_name__(self, owner, name):
        self.public_name = name
        self.private_name = '_' + name

    def __get__(self, obj, objtype=None):
        value = getattr(obj, self.private_name)
        return value

    def __set__(self, obj, value):
        setattr(obj, self.private_name, value)

class SchumacherConfig:
    __default_file__ = "Schumacher.toml"
    __search_path__ = [
        Path.cwd(),
        Path(__file__).resolve().parent,
        PurePath(Path.home(), '.config'),
        Path("/etc/schumacher")
    ]
    server              = GenericDescriptor()
    port                = GenericDescriptor()
    ssl                 = GenericDescriptor()
    nick                = GenericDescriptor()
    username            = GenericDescriptor()
    realname            = GenericDescriptor()
    channels            = GenericDescriptor()
    trigger             = GenericDescriptor()
    password_file       = GenericDescriptor()
    datadir             = GenericDescriptor()
    logfile             = GenericDescriptor()
    line_rate           = GenericDescriptor()
    admins              = GenericDescriptor()
    # games
    quiz_timeout        = GenericDescriptor()
    poll_timeout        = GenericDescriptor()
    quiz_default_rounds = GenericDescriptor()
    quiz_max_rounds     = GenericDescriptor()
    quiz_per_channel    = GenericDescriptor()
    answer_backlog      = GenericDescriptor()
    # background tasks
    event_interval      = GenericDescriptor()
    event_warning       = GenericDescriptor()
    feed_interval       = GenericDescriptor()
    feed_max_age        = GenericDescriptor()
    # http
    standings_url       = GenericDescriptor()
    default_timezone    = GenericDescriptor()
    http_timeout        = GenericDescriptor()
    weather_url         = GenericDescriptor()
    weather_api_key     = GenericDescriptor()

    def __init__(self):
        self.server              = "irc.quakenet.org"
        self.port                = 6667
        self.ssl                 = False
        self.nick                = "Schumacher"
        self.username            = "schumacher"
        self.realname            = "Schumacher motorsport bot"
        self.channels            = ["#motorsport"]
        self.trigger             = "!"
        self.password_file       = "pw"
        self.datadir             = "."
        self.logfile             = ""
        self.line_rate           = 1.0
        self.admins              = []
        self.quiz_timeout        = 20
        self.poll_timeout        = 60
        self.quiz_default_rounds = 5
        self.quiz_max_rounds     = 10
        self.quiz_per_channel    = False
        self.answer_backlog      = 64
        self.event_interval      = 60
        self.event_warning       = 300
        self.feed_interval       = 300
        self.feed_max_age        = 7200
        self.standings_url       = "http://ergast.com/api/f1/current/"
        self.default_timezone    = "Europe/Berlin"
        self.http_timeout        = 10
        self.weather_url         = "https://api.openweathermap.org/data/2.5/weather"
        self.weather_api_key     = ""

    def update(self, dict_obj):
        # tables in the file are only for the reader; keys share one namespace
        for key, val in flatten(
            map(lambda x: iter(dict_obj[x].items()),
                iter(dict_obj.keys()))
            ):
                self.__dict__["_" + key] = val

    def from_file(self, file_path=None):
        try:
            self.update(toml.load(file_path))
        except (OSError, toml.TomlDecodeError):
            log.err(None, f"parsing {file_path}: failed")
            raise

    def fetch_and_update(self):
        path_join = lambda p: Path(p, self.__default_file__).resolve()
        fexists = lambda f: Path(f).resolve().exists()
        parses = lambda p: toml.load(p)
        try:
            self.update(next(map(parses,
                filter(fexists, map(path_join, iter(self.__search_path__))))))
        except StopIteration:
            log.msg(f"no {self.__default_file__} in search path {self.__search_path__}, using defaults")
        except toml.TomlDecodeError:
            log.err(None, f"could not parse {self.__default_file__}")
            raise

    def fetch(self, file_path=None):
        if file_path:
            self.from_file(file_path)
        else:
            self.fetch_and_update()
        return self
