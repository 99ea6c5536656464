"""Knowledge Prism: distil dated journals into atoms, groups and a synthesis."""

__version__ = "0.4.0"
