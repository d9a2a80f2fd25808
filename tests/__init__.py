"""
Suite de tests para la migración de datos legacy de challenges → PostgreSQL.

Los tests NO requieren una base real: usan FakeStore (helpers.py), un store
en memoria con transacciones y errores tipados, y validan:
- Sintaxis de código Python y coherencia de config.MIGRATORS
- Carga de fuentes y filtro incremental
- Pipeline por registro, lotes, recuperación de upserts y orquestación
"""
