"""
Motor genérico de migración de datos legacy → PostgreSQL.

Componentes (de hojas a raíz):
- fields: centinela de omisión y utilidades de campos
- data_loader: lectura de exports y filtro incremental
- descriptor / registry: configuración por modelo y registros compartidos
- payload / upsert: construcción de payloads y ejecución con recuperación
- batch / manager: ejecución por lotes y orquestación por prioridad
"""
