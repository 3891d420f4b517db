from .sinks import CsvSink, EstimateSinks, JsonlSink

__all__ = ["CsvSink", "EstimateSinks", "JsonlSink"]
