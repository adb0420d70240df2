"""Jinja2 sources for the files of a materialized app repository."""

# ---------------------------------------------------------------------------
# Infrastructure (CDK, TypeScript)
# ---------------------------------------------------------------------------
INFRA_PACKAGE_JSON = """\
{
  "name": "{{ app_name | lower }}-infra",
  "version": "0.1.0",
  "private": true,
  "bin": { "infra": "bin/infra.js" },
  "scripts": {
    "build": "tsc",
    "cdk": "cdk"
  },
  "devDependencies": {
    "@types/node": "^20.11.0",
    "aws-cdk": "^2.150.0",
    "esbuild": "^0.21.0",
    "ts-node": "^10.9.2",
    "typescript": "^5.4.0"
  },
  "dependencies": {
    "aws-cdk-lib": "^2.150.0",
    "constructs": "^10.3.0",
    "source-map-support": "^0.5.21"
  }
}
"""

INFRA_TSCONFIG = """\
{
  "compilerOptions": {
    "target": "ES2020",
    "module": "commonjs",
    "lib": ["es2020"],
    "strict": true,
    "esModuleInterop": true,
    "skipLibCheck": true,
    "outDir": "dist"
  },
  "exclude": ["node_modules", "cdk.out"]
}
"""

INFRA_CDK_JSON = """\
{
  "app": "npx ts-node --prefer-ts-exts bin/infra.ts",
  "context": {
    "appId": "{{ app_id }}"
  }
}
"""

INFRA_BIN = """\
#!/usr/bin/env node
import 'source-map-support/register';
import * as cdk from 'aws-cdk-lib';
import { AppStack } from '../lib/app-stack';

const app = new cdk.App();
const env = { account: '{{ account_id }}', region: '{{ region }}' };

new AppStack(app, '{{ app_name }}-Dev', { env, stage: 'dev' });
new AppStack(app, '{{ app_name }}-Prod', { env, stage: 'prod' });
"""

_STACK_HEADER = """\
import * as fs from 'fs';
import * as path from 'path';
import * as cdk from 'aws-cdk-lib';
import { Construct } from 'constructs';
import * as s3 from 'aws-cdk-lib/aws-s3';
import * as s3deploy from 'aws-cdk-lib/aws-s3-deployment';
import * as cloudfront from 'aws-cdk-lib/aws-cloudfront';
import * as origins from 'aws-cdk-lib/aws-cloudfront-origins';
"""

_STACK_WEB = """\
    const webBucket = new s3.Bucket(this, 'WebBucket', {
      blockPublicAccess: s3.BlockPublicAccess.BLOCK_ALL,
      removalPolicy: cdk.RemovalPolicy.DESTROY,
      autoDeleteObjects: true,
    });

    const distribution = new cloudfront.Distribution(this, 'WebDistribution', {
      defaultBehavior: {
        origin: origins.S3BucketOrigin.withOriginAccessControl(webBucket),
        viewerProtocolPolicy: cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
      },
      defaultRootObject: 'index.html',
    });

    // The web build may still be running during a standalone synth
    const webOut = path.join(__dirname, '..', '..', 'web', 'out');
    if (fs.existsSync(webOut)) {
      new s3deploy.BucketDeployment(this, 'WebDeployment', {
        sources: [s3deploy.Source.asset(webOut)],
        destinationBucket: webBucket,
        distribution,
        prune: false,
      });
    }

    const siteUrl = `https://${distribution.distributionDomainName}`;
    new cdk.CfnOutput(this, 'WebBucketName', { value: webBucket.bucketName });
    new cdk.CfnOutput(this, props.stage === 'prod' ? 'ProdUrl' : 'PreviewUrl', { value: siteUrl });
"""

SERVERLESS_STACK = _STACK_HEADER + """\
import * as dynamodb from 'aws-cdk-lib/aws-dynamodb';
import * as lambda from 'aws-cdk-lib/aws-lambda';
import * as lambdaNodejs from 'aws-cdk-lib/aws-lambda-nodejs';
import * as apigw from 'aws-cdk-lib/aws-apigatewayv2';
import * as integrations from 'aws-cdk-lib/aws-apigatewayv2-integrations';

export interface AppStackProps extends cdk.StackProps {
  stage: 'dev' | 'prod';
}

export class AppStack extends cdk.Stack {
  constructor(scope: Construct, id: string, props: AppStackProps) {
    super(scope, id, props);

    const tables: Record<string, dynamodb.Table> = {};
{% for model in spec.data_model %}
    tables['{{ model.table }}'] = new dynamodb.Table(this, '{{ model.table }}Table', {
      partitionKey: { name: '{{ model.partition_key }}', type: dynamodb.AttributeType.STRING },
{% if model.sort_key %}      sortKey: { name: '{{ model.sort_key }}', type: dynamodb.AttributeType.STRING },
{% endif %}      billingMode: dynamodb.BillingMode.PAY_PER_REQUEST,
      removalPolicy: cdk.RemovalPolicy.DESTROY,
    });
{% endfor %}

    const api = new apigw.HttpApi(this, 'Api', {
      corsPreflight: {
        allowOrigins: ['*'],
        allowMethods: [apigw.CorsHttpMethod.ANY],
        allowHeaders: ['*'],
      },
    });
{% for endpoint in spec.api %}
    const {{ endpoint.handler | safe_name }}Fn = new lambdaNodejs.NodejsFunction(this, '{{ endpoint.handler | safe_name }}Fn', {
      runtime: lambda.Runtime.NODEJS_20_X,
      entry: path.join(__dirname, '..', '..', 'api', 'src', 'handlers', '{{ endpoint.handler | safe_name }}.ts'),
      environment: Object.fromEntries(Object.entries(tables).map(([name, t]) => [`TABLE_${name.toUpperCase()}`, t.tableName])),
    });
    Object.values(tables).forEach((t) => t.grantReadWriteData({{ endpoint.handler | safe_name }}Fn));
    api.addRoutes({
      path: '{{ endpoint.path }}',
      methods: [apigw.HttpMethod.{{ endpoint.method }}],
      integration: new integrations.HttpLambdaIntegration('{{ endpoint.handler | safe_name }}Integration', {{ endpoint.handler | safe_name }}Fn),
    });
{% endfor %}

""" + _STACK_WEB + """\
    new cdk.CfnOutput(this, 'ApiUrl', { value: api.apiEndpoint });
  }
}
"""

CONTAINERS_STACK = _STACK_HEADER + """\
import * as ec2 from 'aws-cdk-lib/aws-ec2';
import * as ecs from 'aws-cdk-lib/aws-ecs';
import * as ecsPatterns from 'aws-cdk-lib/aws-ecs-patterns';

export interface AppStackProps extends cdk.StackProps {
  stage: 'dev' | 'prod';
}

export class AppStack extends cdk.Stack {
  constructor(scope: Construct, id: string, props: AppStackProps) {
    super(scope, id, props);

    const vpc = new ec2.Vpc(this, 'Vpc', { maxAzs: 2, natGateways: props.stage === 'prod' ? 2 : 1 });
    const cluster = new ecs.Cluster(this, 'Cluster', { vpc });

    const service = new ecsPatterns.ApplicationLoadBalancedFargateService(this, 'ApiService', {
      cluster,
      cpu: 256,
      memoryLimitMiB: 512,
      desiredCount: props.stage === 'prod' ? 2 : 1,
      publicLoadBalancer: true,
      taskImageOptions: {
        image: ecs.ContainerImage.fromAsset(path.join(__dirname, '..', '..', 'api')),
        containerPort: 8080,
        environment: { STAGE: props.stage },
      },
    });
    service.targetGroup.configureHealthCheck({ path: '/health' });

""" + _STACK_WEB + """\
    new cdk.CfnOutput(this, 'ApiUrl', { value: `http://${service.loadBalancer.loadBalancerDnsName}` });
  }
}
"""

# ---------------------------------------------------------------------------
# Web (Next.js static export)
# ---------------------------------------------------------------------------
WEB_PACKAGE_JSON = """\
{
  "name": "{{ app_name | lower }}-web",
  "version": "0.1.0",
  "private": true,
  "scripts": {
    "dev": "next dev",
    "build": "next build",
    "start": "next start"
  },
  "dependencies": {
    "next": "^14.2.0",
    "react": "^18.3.0",
    "react-dom": "^18.3.0"
  },
  "devDependencies": {
    "@types/node": "^20.11.0",
    "@types/react": "^18.3.0",
    "typescript": "^5.4.0"
  }
}
"""

WEB_NEXT_CONFIG = """\
/** @type {import('next').NextConfig} */
module.exports = {
  output: 'export',
  trailingSlash: true,
  images: { unoptimized: true },
};
"""

WEB_TSCONFIG = """\
{
  "compilerOptions": {
    "target": "ES2020",
    "lib": ["dom", "dom.iterable", "esnext"],
    "strict": false,
    "jsx": "preserve",
    "module": "esnext",
    "moduleResolution": "node",
    "esModuleInterop": true,
    "skipLibCheck": true,
    "noEmit": true,
    "isolatedModules": true,
    "resolveJsonModule": true
  },
  "include": ["next-env.d.ts", "src/**/*.ts", "src/**/*.tsx"],
  "exclude": ["node_modules"]
}
"""

WEB_APP = """\
import type { AppProps } from 'next/app';

export default function App({ Component, pageProps }: AppProps) {
  return <Component {...pageProps} />;
}
"""

WEB_API_LIB = """\
let apiBase: string | null = null;

export async function getApiBase(): Promise<string> {
  if (apiBase !== null) return apiBase;
  try {
    const res = await fetch('/config.json', { cache: 'no-store' });
    const config = await res.json();
    apiBase = config.apiUrl || '/api';
  } catch {
    apiBase = '/api';
  }
  return apiBase;
}
"""

WEB_INDEX_FALLBACK = """\
export default function Home() {
  return (
    <main style={{ '{{' }} fontFamily: 'sans-serif', padding: '2rem' }}>
      <h1>{{ display_name }}</h1>
{% if spec.description %}      <p>{{ spec.description }}</p>
{% endif %}      <ul>
{% for page in spec.pages %}        <li><a href="{{ page.route }}">{{ page.title or page.route }}</a></li>
{% endfor %}      </ul>
    </main>
  );
}
"""

# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
API_HANDLER = """\
// {{ endpoint.method }} {{ endpoint.path }}{% if endpoint.description %}: {{ endpoint.description }}{% endif %}

export const handler = async (event: any) => {
  return {
    statusCode: 200,
    headers: { 'Content-Type': 'application/json' },
    body: JSON.stringify({ handler: '{{ endpoint.handler }}', path: event.rawPath }),
  };
};
"""

API_SERVER = """\
import express from 'express';

const app = express();
app.use(express.json());

app.get('/health', (_req, res) => res.json({ status: 'ok' }));
{% for endpoint in spec.api %}
app.{{ endpoint.method | lower }}('{{ endpoint.path }}', (req, res) => {
  res.json({ handler: '{{ endpoint.handler }}' });
});
{% endfor %}
app.listen(8080, () => console.log('API listening on 8080'));
"""

API_DOCKERFILE = """\
FROM node:20-alpine
WORKDIR /app
COPY package*.json ./
RUN npm install --omit=dev
COPY . .
EXPOSE 8080
CMD ["npx", "ts-node", "src/server.ts"]
"""

API_PACKAGE_JSON = """\
{
  "name": "{{ app_name | lower }}-api",
  "version": "0.1.0",
  "private": true,
  "dependencies": {
{% if blueprint == 'containers' %}    "express": "^4.19.0",
    "ts-node": "^10.9.2",
    "typescript": "^5.4.0"
{% else %}    "@aws-sdk/client-dynamodb": "^3.600.0"
{% endif %}  }
}
"""

# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------
GITIGNORE = """\
node_modules/
cdk.out/
.next/
out/
cdk-outputs-*.json
.launchpad-deps.sha256
"""

README = """\
# {{ display_name }}

{{ spec.description or 'Generated application.' }}

- Blueprint: {{ blueprint }}
- Account: {{ account_id }} ({{ region }})
- Stacks: `{{ app_name }}-Dev`, `{{ app_name }}-Prod`

## Layout

- `infra/`: CDK app
- `web/`: Next.js front end (static export, reads `/config.json` at runtime)
- `api/`: {% if blueprint == 'containers' %}containerized Express service{% else %}Lambda handlers{% endif %}

## Pages
{% for page in spec.pages %}
- `{{ page.route }}`: {{ page.components | join(', ') }}
{%- endfor %}

## API
{% for endpoint in spec.api %}
- `{{ endpoint.method }} {{ endpoint.path }}` ({{ endpoint.handler }})
{%- endfor %}
"""
