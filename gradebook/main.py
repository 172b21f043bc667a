from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gradebook.api.error_handlers import add_error_handlers
from gradebook.api.grading_api import router as grading_router
from gradebook.api.reporting_api import router as reporting_router

app = FastAPI(
    title="成绩评估与汇总服务",
    description="成绩录入、统计汇总与成绩报告API文档",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境请设置具体的域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_error_handlers(app)

# 注册路由
app.include_router(grading_router, prefix="/api/v1/grading")
app.include_router(reporting_router, prefix="/api/v1/reports")


@app.get("/")
def root():
    return {
        "message": "成绩评估与汇总服务",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("gradebook.main:app", host="0.0.0.0", port=8000, reload=False)
